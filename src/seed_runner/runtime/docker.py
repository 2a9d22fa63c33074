"""
Docker engine adapter.

Shells out to the docker CLI. Long-running commands (build, run, push,
pull) stream their output line by line so that an interrupt can terminate
the child process; the interrupt surfaces as Cancelled.
"""

import json
import logging
import os
import shutil
import subprocess
import sys
from typing import Dict, List, Optional, Sequence

from ..errors import BuildFailed, Cancelled, ImageNotFound, PushFailed, RegistryError, SeedError
from .base import ContainerOutcome, ContainerRuntime

logger = logging.getLogger(__name__)

# Lines of captured output quoted in error messages
ERROR_TAIL_LINES = 20


def _tail(output: str, n: int = ERROR_TAIL_LINES) -> List[str]:
    return [line for line in output.splitlines() if line.strip()][-n:]


class DockerRuntime(ContainerRuntime):
    """
    ContainerRuntime backed by the docker command-line client.

    Example:
        runtime = DockerRuntime()
        image_id = runtime.build('.', 'Dockerfile', ['my-job-0.1.0-seed:0.1.0'])
        outcome = runtime.run('my-job-0.1.0-seed:0.1.0', env={}, mounts=[])
    """

    def __init__(self, binary: str = "docker"):
        self.binary = binary

    def available(self) -> bool:
        """Check if the docker binary is on PATH."""
        return shutil.which(self.binary) is not None

    # =========================================================================
    # Process helpers
    # =========================================================================

    def _stream(
        self,
        args: Sequence[str],
        echo: bool = True,
        env: Optional[Dict[str, str]] = None,
        stdin_text: Optional[str] = None,
    ) -> ContainerOutcome:
        """Run a docker command, capturing (and optionally echoing) its output."""
        cmd = [self.binary] + list(args)
        logger.debug("Executing: %s", " ".join(cmd))

        proc_env = None
        if env:
            proc_env = dict(os.environ)
            proc_env.update(env)

        try:
            proc = subprocess.Popen(
                cmd,
                stdin=subprocess.PIPE if stdin_text is not None else None,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                env=proc_env,
            )
        except FileNotFoundError:
            raise SeedError(f"Container runtime '{self.binary}' not found on PATH")

        captured = []
        try:
            if stdin_text is not None:
                proc.stdin.write(stdin_text)
                proc.stdin.close()
            for line in proc.stdout:
                captured.append(line)
                if echo:
                    sys.stdout.write(line)
                    sys.stdout.flush()
            exit_code = proc.wait()
        except KeyboardInterrupt:
            logger.warning("Interrupted; terminating '%s %s'", self.binary, args[0] if args else "")
            proc.terminate()
            try:
                proc.wait(timeout=10)
            except subprocess.TimeoutExpired:
                proc.kill()
                proc.wait()
            raise Cancelled(f"'{self.binary} {args[0] if args else ''}' was interrupted")

        return ContainerOutcome(exit_code=exit_code, output="".join(captured))

    def _capture(self, args: Sequence[str]) -> subprocess.CompletedProcess:
        """Run a short docker query command."""
        cmd = [self.binary] + list(args)
        logger.debug("Executing: %s", " ".join(cmd))
        try:
            return subprocess.run(cmd, capture_output=True, text=True)
        except FileNotFoundError:
            raise SeedError(f"Container runtime '{self.binary}' not found on PATH")

    # =========================================================================
    # ContainerRuntime
    # =========================================================================

    def build(
        self,
        context: str,
        dockerfile: str,
        tags: Sequence[str],
        cache_from: Optional[str] = None,
        labels: Optional[Dict[str, str]] = None,
    ) -> str:
        args = ['build', '-f', str(dockerfile)]
        for tag in tags:
            args.extend(['-t', tag])
        if cache_from:
            args.extend(['--cache-from', cache_from])
        for key, value in (labels or {}).items():
            args.extend(['--label', f"{key}={value}"])
        args.append(str(context))

        outcome = self._stream(args)
        if outcome.exit_code != 0:
            raise BuildFailed(
                f"docker build exited with code {outcome.exit_code}",
                details=_tail(outcome.output),
            )

        result = self._capture(['image', 'inspect', '--format', '{{.Id}}', tags[0]])
        if result.returncode != 0:
            raise BuildFailed(f"Built image {tags[0]} could not be inspected", details=_tail(result.stderr))
        return result.stdout.strip()

    def run(
        self,
        image: str,
        env: Dict[str, str],
        mounts: Sequence[str],
        remove_on_exit: bool = False,
        command: Sequence[str] = (),
        extra_args: Sequence[str] = (),
        quiet: bool = False,
    ) -> ContainerOutcome:
        args = ['run']
        if remove_on_exit:
            args.append('--rm')
        # Values travel through the client's environment, not its argv
        for key in env:
            args.extend(['-e', key])
        for mount in mounts:
            args.extend(['-v', mount])
        args.extend(extra_args)
        args.append(image)
        args.extend(command)

        return self._stream(args, echo=not quiet, env=env)

    def push(self, ref: str) -> None:
        outcome = self._stream(['push', ref])
        if outcome.exit_code != 0:
            raise PushFailed(f"docker push {ref} failed", details=_tail(outcome.output))

    def pull(self, ref: str) -> None:
        outcome = self._stream(['pull', ref])
        if outcome.exit_code != 0:
            raise RegistryError(f"docker pull {ref} failed", details=_tail(outcome.output))

    def tag(self, source: str, target: str) -> None:
        result = self._capture(['tag', source, target])
        if result.returncode != 0:
            raise ImageNotFound(f"Could not tag {source} as {target}", details=_tail(result.stderr))

    def image_label(self, image: str, label: str) -> Optional[str]:
        result = self._capture(['image', 'inspect', '--format', '{{json .Config.Labels}}', image])
        if result.returncode != 0:
            raise ImageNotFound(f"Image not found: {image}", details=_tail(result.stderr))
        labels = json.loads(result.stdout.strip() or 'null') or {}
        return labels.get(label)

    def list_images(self, label: str) -> List[str]:
        result = self._capture([
            'images', '--filter', f'label={label}', '--format', '{{.Repository}}:{{.Tag}}',
        ])
        if result.returncode != 0:
            raise SeedError("docker images failed", details=_tail(result.stderr))
        return sorted(line.strip() for line in result.stdout.splitlines() if line.strip())

    def login(self, registry: str, username: str, password: str) -> None:
        if not username:
            return
        args = ['login', '--username', username, '--password-stdin']
        if registry:
            args.append(registry)
        outcome = self._stream(args, echo=False, stdin_text=password)
        if outcome.exit_code != 0:
            raise RegistryError(f"docker login to {registry or 'docker.io'} failed", details=_tail(outcome.output))
