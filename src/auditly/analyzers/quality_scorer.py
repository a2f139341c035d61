"""
Quality Scorer - Lighthouse scoring behind a process boundary.

Lighthouse is heavyweight (a Chrome instance plus a Node runtime), so it runs
in a dedicated worker process. The scorer exchanges exactly one request and
one response with the worker over stdin/stdout and kills the worker's whole
process group when the hard timeout expires or the audit is cancelled.
"""

import asyncio
import json
import os
import signal
import sys
from typing import Any, Dict, List, Optional

from ..core.errors import AnalyzerError, WorkerProtocolError
from .base_analyzer import AnalyzerStatus, BaseAnalyzer
from .lighthouse_worker import QualityData


WORKER_MODULE = "auditly.analyzers.lighthouse_worker"


def parse_worker_message(raw: bytes) -> Dict[str, Any]:
    """
    Decode the worker's single response message.

    Args:
        raw: Bytes read from the worker's stdout

    Returns:
        The tagged message

    Raises:
        WorkerProtocolError: If the output is not one tagged JSON object
    """
    text = raw.decode("utf-8", errors="replace").strip()
    if not text:
        raise WorkerProtocolError("Quality worker exited without a response")

    # The response is the last line; anything before it is stray output
    line = text.splitlines()[-1]
    try:
        message = json.loads(line)
    except json.JSONDecodeError:
        raise WorkerProtocolError("Quality worker sent a malformed response")

    if not isinstance(message, dict):
        raise WorkerProtocolError("Quality worker response is not an object")

    status = message.get("status")
    if status not in (AnalyzerStatus.SUCCESS.value, AnalyzerStatus.ERROR.value):
        raise WorkerProtocolError(f"Quality worker sent unknown status: {status!r}")

    return message


class QualityScorer(BaseAnalyzer[QualityData]):
    """
    Lighthouse page-quality analyzer.

    Features:
    1. One worker process per audit, started in its own session
    2. Single request/response over pipes (no shared state)
    3. Hard timeout; the worker and its children are killed on every
       abnormal exit

    Example:
        >>> scorer = QualityScorer(timeout=30)
        >>> result = await scorer.run(request)
        >>> result.data.performance
        87
    """

    def __init__(
        self,
        timeout: float = 30.0,
        lighthouse_path: str = "lighthouse",
        worker_command: Optional[List[str]] = None,
    ):
        """
        Initialize the quality scorer.

        Args:
            timeout: Hard timeout for the worker in seconds
            lighthouse_path: Path to the lighthouse binary used by the worker
            worker_command: Command that starts the worker (defaults to this
                interpreter running the bundled worker module)
        """
        super().__init__(analyzer_name="QualityScorer", timeout=timeout)

        self.lighthouse_path = lighthouse_path
        self.worker_command = worker_command or [sys.executable, "-m", WORKER_MODULE]

    def empty_data(self) -> QualityData:
        return QualityData()

    async def _analyze(self, request, **aux) -> QualityData:
        message = {
            "url": request.url,
            "lighthouse_path": self.lighthouse_path,
            "timeout": self.timeout,
        }

        self.logger.debug("starting_quality_worker", command=" ".join(self.worker_command))
        process = await asyncio.create_subprocess_exec(
            *self.worker_command,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=True,
        )

        try:
            stdout, stderr = await process.communicate(json.dumps(message).encode() + b"\n")
        finally:
            if process.returncode is None:
                await self._terminate(process)

        if stderr:
            self.logger.debug(
                "quality_worker_stderr",
                output=stderr.decode("utf-8", errors="replace")[-2000:],
            )

        response = parse_worker_message(stdout)
        if response["status"] == AnalyzerStatus.ERROR.value:
            raise AnalyzerError(response.get("error") or "Lighthouse audit failed")

        return QualityData.model_validate(response.get("data") or {})

    async def _terminate(self, process: asyncio.subprocess.Process):
        """Kill the worker's process group and reap it"""
        self.logger.warning("killing_quality_worker", pid=process.pid)
        try:
            if hasattr(os, "killpg"):
                os.killpg(process.pid, signal.SIGKILL)
            else:
                process.kill()
        except ProcessLookupError:
            pass
        await process.wait()
