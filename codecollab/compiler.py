"""
Runs submitted code in a throwaway directory.

Each call gets its own temporary directory, removed whatever the outcome, so
concurrent runs never share source files or binaries. Every subprocess step
(compile, run) is bounded by settings.COMPILE_TIMEOUT.
"""

from __future__ import annotations

import asyncio
import logging
import re
import sys
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from codecollab.config import settings
from codecollab.errors import ExecutionTimeout

logger = logging.getLogger(__name__)

LANGUAGE_ALIASES: Dict[str, str] = {
    "js": "javascript",
    "javascript": "javascript",
    "node": "javascript",
    "py": "python",
    "python": "python",
    "cpp": "cpp",
    "c++": "cpp",
    "c": "c",
    "java": "java",
}

_JAVA_PUBLIC_CLASS = re.compile(r"public\s+class\s+\w+")
_BINARY = "main.exe" if sys.platform == "win32" else "main"


@dataclass
class CompileResult:
    stdout: Optional[str] = None
    error: Optional[str] = None
    details: Optional[str] = None

    def to_dict(self) -> Dict[str, str]:
        if self.error is None:
            return {"stdout": self.stdout or ""}
        out = {"error": self.error}
        if self.details:
            out["details"] = self.details
        return out


def normalize_language(language: str) -> Optional[str]:
    return LANGUAGE_ALIASES.get((language or "").strip().lower())


async def _exec(argv: List[str], cwd: Path, stdin: str, timeout: float) -> Tuple[int, str, str]:
    proc = await asyncio.create_subprocess_exec(
        *argv,
        cwd=str(cwd),
        stdin=asyncio.subprocess.PIPE,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        out, err = await asyncio.wait_for(proc.communicate(stdin.encode()), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise ExecutionTimeout(f"{argv[0]} exceeded {timeout}s")
    return proc.returncode, out.decode(errors="replace"), err.decode(errors="replace")


async def _build_and_run(workdir: Path, build: Optional[List[str]], run: List[str],
                         stdin: str, timeout: float) -> CompileResult:
    if build:
        code, _, err = await _exec(build, workdir, "", timeout)
        if code != 0:
            return CompileResult(error="Compilation failed", details=err)
    code, out, err = await _exec(run, workdir, stdin, timeout)
    if code != 0:
        return CompileResult(error=f"Runtime error (exit code {code})", details=err or out)
    return CompileResult(stdout=out)


def _prepare(language: str, workdir: Path, code: str) -> Tuple[Optional[List[str]], List[str]]:
    """Write the source file and return (build argv, run argv)."""
    binary = str(workdir / _BINARY)
    if language == "python":
        (workdir / "main.py").write_text(code, encoding="utf-8")
        return None, [settings.PYTHON_EXECUTABLE, "main.py"]
    if language == "javascript":
        (workdir / "main.js").write_text(code, encoding="utf-8")
        return None, [settings.NODE_EXECUTABLE, "main.js"]
    if language == "cpp":
        (workdir / "main.cpp").write_text(code, encoding="utf-8")
        return ["g++", "main.cpp", "-o", binary], [binary]
    if language == "c":
        (workdir / "main.c").write_text(code, encoding="utf-8")
        return ["gcc", "main.c", "-o", binary], [binary]
    if language == "java":
        # javac insists the public class matches the file name
        (workdir / "Main.java").write_text(_JAVA_PUBLIC_CLASS.sub("public class Main", code, count=1),
                                           encoding="utf-8")
        return ["javac", "Main.java"], ["java", "-cp", str(workdir), "Main"]
    raise ValueError(language)


async def run_code(code: str, language: str, stdin: str = "", timeout: Optional[float] = None) -> CompileResult:
    """Compile (when needed) and run code, feeding stdin. Never raises for user errors."""
    lang = normalize_language(language)
    if lang is None:
        return CompileResult(error="Unsupported language", details=str(language))
    timeout = timeout if timeout is not None else settings.COMPILE_TIMEOUT

    with tempfile.TemporaryDirectory(prefix="codecollab-") as tmp:
        workdir = Path(tmp)
        build, run = _prepare(lang, workdir, code)
        try:
            return await _build_and_run(workdir, build, run, stdin or "", timeout)
        except ExecutionTimeout as e:
            logger.info(f"Execution timed out: {e}")
            return CompileResult(error="Execution timed out", details=str(e))
        except FileNotFoundError as e:
            logger.error(f"Toolchain missing for {lang}: {e}")
            return CompileResult(error="Toolchain not available", details=str(e))
