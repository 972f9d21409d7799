"""Docker-backed sandbox runner."""

from __future__ import annotations

import asyncio
import json
import os
import shutil
import subprocess
import tempfile
import time
import uuid
from importlib import resources
from pathlib import Path
from typing import Optional

from rich.console import Console

from ..exceptions import SandboxError
from ..models.analysis import ResourceUsage, SandboxLimits, SandboxResult
from ..models.config import SandboxSettings
from .base import build_result, classify_signals, skipped_result

console = Console()

IMAGE_FILES = ("Dockerfile", "entrypoint.sh")
CLI_TIMEOUT = 15
BUILD_TIMEOUT = 600
# The image runs as an unprivileged user that owns none of the host paths.
WRITABLE_MOUNT_MODE = 0o777


def open_code_tree(code_path: Path) -> None:
    """Make the extracted code readable by any uid; it is mounted read-only."""
    for root, _dirs, files in os.walk(code_path):
        os.chmod(root, os.stat(root).st_mode | 0o555)
        for name in files:
            path = os.path.join(root, name)
            if not os.path.islink(path):
                os.chmod(path, os.stat(path).st_mode | 0o444)


class DockerSandbox:
    """Runs the uploaded code in a locked-down, network-less container."""

    name = "docker"

    def __init__(self, settings: Optional[SandboxSettings] = None):
        self.settings = settings or SandboxSettings()
        self._available: Optional[bool] = None

    # -- runtime probing -----------------------------------------------------

    def _daemon_responds(self) -> bool:
        try:
            result = subprocess.run(
                ["docker", "version"],
                capture_output=True, text=True, timeout=CLI_TIMEOUT,
            )
        except (OSError, subprocess.TimeoutExpired):
            return False
        return result.returncode == 0

    async def is_available(self) -> bool:
        if self._available is None:
            self._available = await asyncio.to_thread(self._daemon_responds)
        return self._available

    def _ensure_image(self) -> None:
        image = self.settings.image
        inspect = subprocess.run(
            ["docker", "image", "inspect", image],
            capture_output=True, text=True, timeout=CLI_TIMEOUT,
        )
        if inspect.returncode == 0:
            return

        console.print(f"  [cyan]Building sandbox image {image}...[/cyan]")
        build_dir = Path(tempfile.mkdtemp(prefix="appvet-image-"))
        try:
            data_pkg = resources.files("appvet.data.sandbox")
            for name in IMAGE_FILES:
                (build_dir / name).write_text(
                    (data_pkg / name).read_text(encoding="utf-8"), encoding="utf-8"
                )
            build = subprocess.run(
                ["docker", "build", "-t", image, str(build_dir)],
                capture_output=True, text=True, timeout=BUILD_TIMEOUT,
            )
        finally:
            shutil.rmtree(build_dir, ignore_errors=True)

        if build.returncode != 0:
            raise SandboxError(f"Failed to build sandbox image: {build.stderr.strip()[:500]}")
        console.print(f"  [green]OK[/green] Sandbox image {image} built")

    # -- execution -----------------------------------------------------------

    def build_run_args(
        self,
        container_name: str,
        code_path: Path,
        output_dir: Path,
        logs_dir: Path,
        limits: SandboxLimits,
    ) -> list[str]:
        return [
            "docker", "run",
            "--rm",
            f"--name={container_name}",
            f"--memory={limits.memory_limit}",
            f"--cpus={limits.cpu_limit}",
            "--network=none",
            "--read-only",
            f"--tmpfs=/tmp:rw,noexec,nosuid,size={self.settings.tmpfs_size}",
            "--cap-drop=ALL",
            "--security-opt=no-new-privileges",
            f"--env=SANDBOX_TIMEOUT={limits.timeout_seconds}",
            f"-v={code_path}:/app/code:ro",
            f"-v={output_dir}:/app/output:rw",
            f"-v={logs_dir}:/app/logs:rw",
            self.settings.image,
        ]

    def _kill(self, container_name: str) -> None:
        try:
            subprocess.run(
                ["docker", "kill", container_name],
                capture_output=True, text=True, timeout=CLI_TIMEOUT,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            console.print(f"  [yellow]WARN[/yellow] Could not kill {container_name}: {e}")

    @staticmethod
    def _read_metrics(output_dir: Path) -> dict:
        path = output_dir / "metrics.json"
        if not path.exists():
            return {}
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return {}
        return data if isinstance(data, dict) else {}

    @staticmethod
    def _read_logs(logs_dir: Path) -> str:
        path = logs_dir / "execution.log"
        if not path.exists():
            return ""
        return path.read_text(encoding="utf-8", errors="replace")

    async def run(self, code_path: Path, limits: SandboxLimits) -> SandboxResult:
        if not await self.is_available():
            console.print("  [yellow]WARN[/yellow] Docker not available, skipping sandbox analysis")
            return skipped_result("Docker is not available for sandbox testing")

        try:
            await asyncio.to_thread(self._ensure_image)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise SandboxError(f"Sandbox image check failed: {e}") from e

        workspace = Path(tempfile.mkdtemp(prefix="appvet-sandbox-"))
        output_dir = workspace / "output"
        logs_dir = workspace / "logs"
        container_name = f"appvet-sandbox-{uuid.uuid4().hex[:12]}"

        try:
            for mount in (output_dir, logs_dir):
                mount.mkdir()
                os.chmod(mount, WRITABLE_MOUNT_MODE)
            open_code_tree(Path(code_path))
            args = self.build_run_args(
                container_name, Path(code_path).resolve(), output_dir, logs_dir, limits
            )
            console.print(
                f"  [cyan]Running sandbox...[/cyan] timeout={limits.timeout_seconds}s, "
                f"memory={limits.memory_limit}, cpu={limits.cpu_limit}"
            )

            start = time.monotonic()
            killed = False
            exit_code: Optional[int] = None
            stderr = ""
            try:
                proc = await asyncio.to_thread(
                    subprocess.run,
                    args,
                    capture_output=True,
                    text=True,
                    timeout=limits.timeout_seconds + self.settings.kill_buffer_seconds,
                )
                exit_code = proc.returncode
                stderr = proc.stderr or ""
            except subprocess.TimeoutExpired:
                killed = True
                await asyncio.to_thread(self._kill, container_name)
            except asyncio.CancelledError:
                await asyncio.to_thread(self._kill, container_name)
                raise
            except OSError as e:
                raise SandboxError(f"Failed to start sandbox container: {e}") from e
            elapsed_ms = int((time.monotonic() - start) * 1000)

            metrics = self._read_metrics(output_dir)
            logs = self._read_logs(logs_dir) + stderr
            findings = classify_signals(
                logs,
                status=metrics.get("status"),
                exit_code=exit_code,
                timed_out=killed,
                timeout_seconds=limits.timeout_seconds,
            )
            usage = ResourceUsage(
                cpu_percent=metrics.get("cpuPercent", 0) or 0,
                memory_mb=metrics.get("memoryMb", 0) or 0,
                disk_mb=metrics.get("diskMb", 0) or 0,
            )
            result = build_result(findings, elapsed_ms, usage)
            status = "[green]OK[/green]" if result.passed else "[yellow]WARN[/yellow]"
            console.print(
                f"  {status} Sandbox: {len(findings)} findings, score {result.score} ({elapsed_ms}ms)"
            )
            return result
        finally:
            shutil.rmtree(workspace, ignore_errors=True)
