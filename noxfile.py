"""nox build configuration for the workspace provisioner."""

import nox

# Default sessions
nox.options.sessions = ["lint", "typing", "test", "coverage-report"]

# Other nox defaults
nox.options.default_venv_backend = "uv|virtualenv"
nox.options.reuse_existing_virtualenvs = True


def _install(session: nox.Session) -> None:
    """Install the package and its development dependencies."""
    session.install("-e", ".[dev]")


@nox.session(name="coverage-report")
def coverage_report(session: nox.Session) -> None:
    """Generate a code coverage report from the test suite."""
    _install(session)
    session.run("coverage", "report", *session.posargs)


@nox.session
def lint(session: nox.Session) -> None:
    """Run pre-commit hooks."""
    session.install("pre-commit")
    session.run("pre-commit", "run", "--all-files", *session.posargs)


@nox.session
def test(session: nox.Session) -> None:
    """Run tests."""
    _install(session)
    session.run(
        "pytest",
        "--cov=provisioner",
        "--cov-branch",
        "--cov-report=",
        *session.posargs,
    )


@nox.session
def typing(session: nox.Session) -> None:
    """Run mypy."""
    _install(session)
    session.install("nox")
    session.run(
        "mypy",
        *session.posargs,
        "--namespace-packages",
        "--explicit-package-bases",
        "noxfile.py",
        "src",
        "tests",
    )
