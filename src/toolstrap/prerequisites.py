"""Built-in prerequisite chain and the step factories it is made of."""

from __future__ import annotations

from pathlib import Path

from toolstrap.config import BootstrapConfig
from toolstrap.models import (
    ArchiveKind,
    BuildContext,
    BuildStep,
    BuildStepKind,
    CloneSpec,
    Command,
    DownloadSpec,
    PrerequisiteSpec,
)
from toolstrap.platform import SupportedOS, current_os

JHBUILD_REPOSITORY = "https://gitlab.gnome.org/GNOME/jhbuild.git"


def configure_step(*options: str, script: str = "configure") -> BuildStep:
    """``<shell> <script> --prefix=<prefix> <options>`` in the source directory."""

    def factory(source_dir: Path, context: BuildContext) -> Command:
        return Command(
            parts=(context.shell, script, f"--prefix={context.prefix}", *options),
            env=context.env(),
            cwd=source_dir,
        )

    return BuildStep(BuildStepKind.CONFIGURE, factory)


def bootstrap_step(script: str = "autogen.sh") -> BuildStep:
    def factory(source_dir: Path, context: BuildContext) -> Command:
        return Command(
            parts=(context.shell, script, f"--prefix={context.prefix}"),
            env=context.env(),
            cwd=source_dir,
        )

    return BuildStep(BuildStepKind.BOOTSTRAP, factory)


def make_step(*targets: str, kind: BuildStepKind = BuildStepKind.MAKE) -> BuildStep:
    def factory(source_dir: Path, context: BuildContext) -> Command:
        return Command(
            parts=(context.make, f"-j{context.parallelism}", *targets),
            env=context.env(),
            cwd=source_dir,
        )

    return BuildStep(kind, factory)


def interpreter_steps() -> tuple[BuildStep, ...]:
    """``setup.py`` build, test and install with the configured interpreter."""

    def build(source_dir: Path, context: BuildContext) -> Command:
        return Command(parts=(context.python, "setup.py", "build"), env=context.env(), cwd=source_dir)

    def test(source_dir: Path, context: BuildContext) -> Command:
        return Command(parts=(context.python, "setup.py", "test"), env=context.env(), cwd=source_dir)

    def install(source_dir: Path, context: BuildContext) -> Command:
        return Command(
            parts=(context.python, "setup.py", "install", f"--prefix={context.prefix}"),
            env=context.env(),
            cwd=source_dir,
        )

    return (
        BuildStep(BuildStepKind.INTERPRETER_BUILD, build),
        BuildStep(BuildStepKind.INTERPRETER_TEST, test),
        BuildStep(BuildStepKind.INTERPRETER_INSTALL, install),
    )


def autotools_steps(*options: str, script: str = "configure", check_target: str | None = None) -> tuple[BuildStep, ...]:
    """Configure, make, optionally check, and install."""
    steps = [configure_step(*options, script=script), make_step()]
    if check_target is not None:
        steps.append(make_step(check_target, kind=BuildStepKind.MAKE_CHECK))
    steps.append(make_step("install", kind=BuildStepKind.MAKE_INSTALL))
    return tuple(steps)


def tarball(url: str, download_dir: Path, directory: str, *, archive: ArchiveKind = "tar.gz", checksum: str = "") -> DownloadSpec:
    filename = url.rsplit("/", 1)[-1]
    return DownloadSpec(
        url=url,
        target=download_dir / filename,
        archive=archive,
        destination=download_dir / directory,
        checksum=checksum,
    )


def git_download(host: SupportedOS, download_dir: Path) -> DownloadSpec | None:
    """Source tarball for git on hosts that can build it, ``None`` elsewhere."""
    if host in (SupportedOS.LINUX_32, SupportedOS.LINUX_64):
        return tarball(
            "https://www.kernel.org/pub/software/scm/git/git-2.13.3.tar.gz",
            download_dir,
            "git-2.13.3",
            checksum="e10ede8b80a2c987d04ee376534cb7e1",
        )
    return None


def default_prerequisites(
    config: BootstrapConfig,
    *,
    host: SupportedOS | None = None,
) -> tuple[PrerequisiteSpec, ...]:
    """The prerequisite chain in installation order, ending with the build manager."""
    host = host if host is not None else current_os()
    download_dir = config.download_dir
    check = "check" if config.run_checks else None

    git_spec = git_download(host, download_dir)
    return (
        PrerequisiteSpec(name="cc", binary=config.cc, policy="fail"),
        PrerequisiteSpec(
            name="cpan",
            binary=config.cpan,
            policy=config.policy_for("cpan"),
            download=tarball("https://www.cpan.org/src/5.0/perl-5.26.2.tar.gz", download_dir, "perl-5.26.2"),
            steps=(
                BuildStep(BuildStepKind.CONFIGURE, _perl_configure),
                make_step(),
                *((make_step("test", kind=BuildStepKind.MAKE_CHECK),) if config.run_checks else ()),
                make_step("install", kind=BuildStepKind.MAKE_INSTALL),
            ),
        ),
        PrerequisiteSpec(
            name="msgfmt",
            binary=config.msgfmt,
            policy=config.policy_for("msgfmt"),
            download=tarball(
                "https://ftp.gnu.org/pub/gnu/gettext/gettext-0.19.8.1.tar.xz",
                download_dir,
                "gettext-0.19.8.1",
                archive="tar.xz",
                checksum="df3f5690eaa30fd228537b00cb7b7590",
            ),
            steps=autotools_steps(check_target=check),
        ),
        PrerequisiteSpec(
            name="zlib",
            binary="zlib",
            check="pkgconfig",
            policy=config.policy_for("zlib"),
            download=tarball(
                "https://zlib.net/fossils/zlib-1.2.11.tar.gz",
                download_dir,
                "zlib-1.2.11",
                checksum="1c9f62f0778697a09d36121ead88e08e",
            ),
            steps=autotools_steps(check_target=check),
        ),
        PrerequisiteSpec(
            name="libffi",
            binary="libffi",
            check="pkgconfig",
            policy=config.policy_for("libffi"),
            download=tarball(
                "https://sourceware.org/pub/libffi/libffi-3.2.1.tar.gz",
                download_dir,
                "libffi-3.2.1",
                checksum="83b89587607e3eb65c70d361f13bab43",
            ),
            steps=autotools_steps(check_target=check),
        ),
        PrerequisiteSpec(
            name="git",
            binary=config.git,
            # no buildable download for this host
            policy=config.policy_for("git") if git_spec is not None else "fail",
            download=git_spec,
            steps=autotools_steps(check_target="test" if config.run_checks else None),
        ),
        PrerequisiteSpec(
            name="openssl",
            binary="openssl",
            check="pkgconfig",
            policy=config.policy_for("openssl"),
            download=tarball("https://www.openssl.org/source/openssl-1.1.0h.tar.gz", download_dir, "openssl-1.1.0h"),
            steps=autotools_steps(
                f"--openssldir={config.installation_prefix / 'ssl'}",
                "shared",
                script="config",
                check_target="test" if config.run_checks else None,
            ),
        ),
        PrerequisiteSpec(
            name="python",
            binary=config.python,
            policy=config.policy_for("python"),
            download=tarball(
                "https://www.python.org/ftp/python/3.6.5/Python-3.6.5.tgz",
                download_dir,
                "Python-3.6.5",
                checksum="ab25d24b1f8cc4990ade979f6dc37883",
            ),
            steps=autotools_steps("--with-ensurepip=install", check_target="test" if config.run_checks else None),
        ),
        PrerequisiteSpec(
            name="jhbuild",
            binary=config.jhbuild,
            policy=config.policy_for("jhbuild"),
            clone=CloneSpec(repository=JHBUILD_REPOSITORY, destination=download_dir / "jhbuild"),
            steps=(
                bootstrap_step(),
                make_step(),
                make_step("install", kind=BuildStepKind.MAKE_INSTALL),
            ),
        ),
    )


def _perl_configure(source_dir: Path, context: BuildContext) -> Command:
    return Command(
        parts=(context.shell, "Configure", "-des", f"-Dprefix={context.prefix}"),
        env=context.env(),
        cwd=source_dir,
    )


__all__ = [
    "JHBUILD_REPOSITORY",
    "autotools_steps",
    "bootstrap_step",
    "configure_step",
    "default_prerequisites",
    "git_download",
    "interpreter_steps",
    "make_step",
    "tarball",
]
