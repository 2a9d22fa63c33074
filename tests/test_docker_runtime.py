"""Tests for docker command construction (no docker daemon needed)."""

import subprocess

import pytest

from seed_runner.errors import BuildFailed, Cancelled, ImageNotFound
from seed_runner.runtime.base import ContainerOutcome
from seed_runner.runtime.docker import DockerRuntime


class RecordingDocker(DockerRuntime):
    """DockerRuntime with process execution replaced by canned results."""

    def __init__(self, exit_code=0, stdout=""):
        super().__init__("docker")
        self.exit_code = exit_code
        self.stdout = stdout
        self.streamed = []
        self.captured = []

    def _stream(self, args, echo=True, env=None, stdin_text=None):
        self.streamed.append({"args": list(args), "echo": echo, "env": env, "stdin": stdin_text})
        return ContainerOutcome(exit_code=self.exit_code, output="step 1\nstep 2\n")

    def _capture(self, args):
        self.captured.append(list(args))
        return subprocess.CompletedProcess(args, self.exit_code, stdout=self.stdout, stderr="no such image")


def test_build_args():
    docker = RecordingDocker(stdout="sha256:123\n")
    image_id = docker.build("ctx", "ctx/Dockerfile", ["algo-1.0.0-seed:1.0.0"],
                            cache_from="algo:old", labels={"com.ngageoint.seed.manifest": "{}"})
    assert image_id == "sha256:123"
    assert docker.streamed[0]["args"] == [
        "build", "-f", "ctx/Dockerfile", "-t", "algo-1.0.0-seed:1.0.0",
        "--cache-from", "algo:old", "--label", "com.ngageoint.seed.manifest={}", "ctx",
    ]


def test_build_failure():
    with pytest.raises(BuildFailed) as exc_info:
        RecordingDocker(exit_code=1).build("ctx", "ctx/Dockerfile", ["algo-1.0.0-seed:1.0.0"])
    assert exc_info.value.details == ["step 1", "step 2"]


def test_run_passes_env_names_only():
    docker = RecordingDocker()
    outcome = docker.run(
        "algo-1.0.0-seed:1.0.0",
        env={"API_KEY": "s3cret"},
        mounts=["/data/a.png:/image/a.png:ro"],
        remove_on_exit=True,
        command=["run.sh", "/image/a.png"],
        extra_args=["--cpus", "1"],
        quiet=True,
    )
    call = docker.streamed[0]
    assert call["args"] == [
        "run", "--rm", "-e", "API_KEY", "-v", "/data/a.png:/image/a.png:ro",
        "--cpus", "1", "algo-1.0.0-seed:1.0.0", "run.sh", "/image/a.png",
    ]
    assert "s3cret" not in " ".join(call["args"])
    assert call["env"] == {"API_KEY": "s3cret"}
    assert call["echo"] is False
    assert outcome.exit_code == 0


def test_image_label():
    docker = RecordingDocker(stdout='{"com.ngageoint.seed.manifest": "{\\"job\\": {}}"}\n')
    assert docker.image_label("algo", "com.ngageoint.seed.manifest") == '{"job": {}}'
    assert docker.image_label("algo", "other") is None


def test_image_label_missing_image():
    with pytest.raises(ImageNotFound):
        RecordingDocker(exit_code=1).image_label("nope", "com.ngageoint.seed.manifest")


def test_login_uses_stdin():
    docker = RecordingDocker()
    docker.login("localhost:5000", "user", "pw")
    call = docker.streamed[0]
    assert call["args"] == ["login", "--username", "user", "--password-stdin", "localhost:5000"]
    assert call["stdin"] == "pw"


class InterruptedProcess:
    """Popen stand-in whose output stream is interrupted by Ctrl-C."""

    def __init__(self, *args, **kwargs):
        self.args = args
        self.terminated = False
        self.stdin = None
        self.stdout = self

    def __iter__(self):
        return self

    def __next__(self):
        raise KeyboardInterrupt

    def terminate(self):
        self.terminated = True

    def kill(self):
        raise AssertionError("kill should not be needed after terminate")

    def wait(self, timeout=None):
        return -15


def test_interrupt_terminates_child(monkeypatch):
    processes = []

    def popen(*args, **kwargs):
        proc = InterruptedProcess(*args, **kwargs)
        processes.append(proc)
        return proc

    monkeypatch.setattr("seed_runner.runtime.docker.subprocess.Popen", popen)

    with pytest.raises(Cancelled):
        DockerRuntime("docker").run("algo-1.0.0-seed:1.0.0", env={}, mounts=[])
    assert processes[0].terminated
    assert processes[0].args[0][:2] == ["docker", "run"]
