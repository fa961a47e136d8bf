from __future__ import annotations


class InstallerError(RuntimeError):
    """Base class for every error the installer raises on purpose."""


class PreconditionError(InstallerError):
    """The live environment cannot run an installation at all.

    Raised before the pipeline starts; nothing has been written yet.
    """

    def __init__(self, problems: list[str]):
        self.problems = list(problems)
        super().__init__(f"Preflight failed with {len(self.problems)} error(s): " + "; ".join(self.problems))


class ConfigurationError(InstallerError):
    """Configuration is missing or contradictory."""


class StageError(InstallerError):
    """A stage could not complete. Aborts the run; state stays resumable."""


class CommandError(StageError):
    def __init__(self, argv: list[str], returncode: int, stderr: str = ""):
        self.argv = argv
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(f"Command failed ({returncode}): {' '.join(argv)}\n{stderr}".rstrip())


class AbortError(InstallerError):
    """The operator declined to continue."""
