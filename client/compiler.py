import aiohttp
import asyncio
from dataclasses import dataclass
from typing import Optional
from constants import COMPILER_URL, COMPILE_TIMEOUT
from logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class CompileResult:
    output: str
    ok: bool


class CompileClient:
    """Pass-through to the external code execution service.

    POSTs {code, language, input} and expects {stdout, stderr} back. There is no
    retry: any failure comes back as an "Error: ..." output so the caller can
    show it as-is.
    """

    def __init__(self, url: str = COMPILER_URL, timeout: float = COMPILE_TIMEOUT, session: Optional[aiohttp.ClientSession] = None):
        self.url = url
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session

    async def compile(self, code: str, language: str, stdin: str = "") -> CompileResult:
        body = {"code": code, "language": language, "input": stdin}
        logger.debug(f"Compile request to {self.url}: language={language}, {len(code)} chars")
        session = self._session or aiohttp.ClientSession(timeout=self.timeout)
        try:
            async with session.post(self.url, json=body) as resp:
                data = await _json_or_none(resp)
                if resp.status >= 400:
                    message = data.get("error") if isinstance(data, dict) and data.get("error") else f"HTTP {resp.status}"
                    logger.warning(f"Compile service returned {resp.status}: {message}")
                    return CompileResult(output=f"Error: {message}", ok=False)
                if not isinstance(data, dict):
                    return CompileResult(output="Error: unexpected response from compile service", ok=False)
                return CompileResult(output=data.get("stdout") or data.get("stderr") or "", ok=True)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Compile request to {self.url} failed: {e}", exc_info=True)
            return CompileResult(output=f"Error: {str(e) or type(e).__name__}", ok=False)
        finally:
            if self._session is None:
                await session.close()


async def _json_or_none(resp: aiohttp.ClientResponse):
    try:
        return await resp.json(content_type=None)
    except ValueError:
        return None
