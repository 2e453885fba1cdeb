import nox

PYTHON_VERSIONS = ["3.11", "3.12", "3.13"]

AREAS = ["inventory", "ordering", "payments", "notifications", "sweeps"]


def _install(session: nox.Session) -> None:
    """Install the project with its test extra into the nox virtualenv."""
    session.install("-e", ".[test]")


@nox.session(python=PYTHON_VERSIONS)
def tests(session: nox.Session) -> None:
    """Run full test suite across Python versions."""
    _install(session)
    session.run("pytest", *session.posargs)


@nox.session(python=PYTHON_VERSIONS)
def tests_domain(session: nox.Session) -> None:
    """Run domain-layer tests only (no HTTP, no threads)."""
    _install(session)
    session.run("pytest", "-m", "domain", *session.posargs)


@nox.session(python=PYTHON_VERSIONS[-1])
def tests_area(session: nox.Session) -> None:
    """Run one area's tests: ``nox -s tests_area -- payments``."""
    _install(session)
    area = session.posargs[0] if session.posargs else "ordering"
    if area not in AREAS:
        session.error(f"Unknown area {area}; choose from {', '.join(AREAS)}")
    session.run("pytest", f"tests/{area}")


@nox.session(python=PYTHON_VERSIONS[-1])
def tests_postgres(session: nox.Session) -> None:
    """Run the suite against PostgreSQL (needs DATABASE_URL)."""
    _install(session)
    session.run("pytest", "--env", "production", *session.posargs)
