"""Data sources collected by a backup run."""

import asyncio
import os
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import aiofiles

from ..utils.errors import SourceError
from ..utils.files import FileManager
from ..utils.timestamps import utc_now


class DataSource(ABC):
    """Something a backup run can snapshot into a staging directory."""

    @abstractmethod
    async def collect(self, path: str, destination: str, exclude_patterns: List[str]) -> Dict[str, Any]:
        """
        Snapshot path into destination.

        Returns:
            Dict[str, Any]: path, size, checksum and timestamp of the snapshot
        """


class FileSystemSource(DataSource):
    """Copies a file or directory tree, skipping excluded names."""

    async def collect(self, path: str, destination: str, exclude_patterns: List[str]) -> Dict[str, Any]:
        file_manager = FileManager(exclude_patterns=exclude_patterns)
        stats = await asyncio.to_thread(file_manager.copy_tree, path, destination)

        return {
            "path": path,
            "size": stats["size"],
            "files": stats["files"],
            "checksum": stats["checksum"],
            "timestamp": utc_now().isoformat(),
        }


class CommandSource(DataSource):
    """Runs an external export tool (pg_dump, mongodump, redis-cli ...) and stores its stdout."""

    def __init__(
        self,
        command: List[str],
        output: str = "dump.out",
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ):
        """
        Initialize command source.

        Args:
            command: Argument vector of the export tool
            output: File name the tool's stdout is written to
            env: Extra environment variables for the tool
            timeout: Seconds before the tool is killed
        """
        if not command:
            raise ValueError("CommandSource requires a non-empty command")
        self.command = list(command)
        self.output = output
        self.env = env or {}
        self.timeout = timeout

    async def collect(self, path: str, destination: str, exclude_patterns: List[str]) -> Dict[str, Any]:
        os.makedirs(destination, exist_ok=True)
        output_path = os.path.join(destination, self.output)

        try:
            process = await asyncio.create_subprocess_exec(
                *self.command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env={**os.environ, **self.env},
            )
        except OSError as e:
            raise SourceError(f"Failed to start export command for {path}: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            process.kill()
            await process.wait()
            raise SourceError(f"Export command for {path} timed out after {self.timeout}s") from e

        if process.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip()
            raise SourceError(
                f"Export command for {path} exited with code {process.returncode}",
                details=message or None,
            )

        async with aiofiles.open(output_path, "wb") as f:
            await f.write(stdout)

        return {
            "path": path,
            "size": os.path.getsize(output_path),
            "files": 1,
            "checksum": FileManager().checksum_file(output_path),
            "timestamp": utc_now().isoformat(),
        }


def build_sources(sources_config: Dict[str, Any]) -> Dict[str, DataSource]:
    """Create the configured non-filesystem sources keyed by include path."""
    sources: Dict[str, DataSource] = {}
    for name, source_config in (sources_config or {}).items():
        source_type = source_config.get("type", "command")
        if source_type == "command":
            sources[name] = CommandSource(
                command=source_config["command"],
                output=source_config.get("output", f"{name}.dump"),
                env=source_config.get("env"),
                timeout=source_config.get("timeout"),
            )
        elif source_type == "filesystem":
            sources[name] = FileSystemSource()
        else:
            raise ValueError(f"Unknown source type for {name}: {source_type}")
    return sources
