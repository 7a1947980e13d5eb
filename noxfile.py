# Copyright (c) 2024 blobrelay developers
# This software is distributed under the terms of the MIT License.
# type: ignore

import shutil
from pathlib import Path
import nox


ROOT_DIR = Path(__file__).resolve().parent

PYTHONS = ["3.8", "3.9", "3.10", "3.11", "3.12"]
"""The newest supported Python shall be listed last."""

nox.options.error_on_external_run = True


@nox.session(python=False)
def clean(session):
    wildcards = [
        "dist",
        "build",
        "html*",
        ".coverage*",
        ".*cache",
        "*.egg-info",
        "*.log",
        "*.tmp",
        ".nox",
    ]
    for w in wildcards:
        for f in Path.cwd().glob(w):
            session.log(f"Removing: {f}")
            if f.is_dir():
                shutil.rmtree(f, ignore_errors=True)
            else:
                f.unlink()


@nox.session(python=PYTHONS, reuse_venv=True)
def test(session):
    session.install("-e", ".[testing]")

    # The test suite generates temporary files, so we change the working directory.
    # We have to symlink the original setup.cfg as well if we run tools from the new directory.
    tmp_dir = Path(session.create_tmp()).resolve()
    session.cd(tmp_dir)
    fn = "setup.cfg"
    if not (tmp_dir / fn).exists():
        (tmp_dir / fn).symlink_to(ROOT_DIR / fn)

    session.env["PYTHONASYNCIODEBUG"] = "1"
    session.run(
        "coverage",
        "run",
        "-m",
        "pytest",
        "-c",
        str(ROOT_DIR / fn),
        "--rootdir",
        str(ROOT_DIR),
        str(ROOT_DIR / "blobrelay"),
        str(ROOT_DIR / "tests"),
        *session.posargs,
    )
    session.run("coverage", "combine")
    session.run("coverage", "report", "--fail-under=90")
    if session.interactive:
        session.run("coverage", "html")
        report_file = Path.cwd().resolve() / "htmlcov" / "index.html"
        session.log(f"COVERAGE REPORT: file://{report_file}")


MYPY_VERSION = "1.8.0"


@nox.session(python=PYTHONS[-1], reuse_venv=True)
def mypy(session):
    session.install("-e", ".[testing]", "mypy == " + MYPY_VERSION)
    session.run(
        "mypy",
        "--config-file",
        str(ROOT_DIR / "setup.cfg"),
        "--strict",
        str(ROOT_DIR / "blobrelay"),
        str(ROOT_DIR / "tests"),
    )
