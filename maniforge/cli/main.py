#!/usr/bin/env python3
"""CLI for authoring, updating and submitting package manifests."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Callable

from maniforge import __version__, observability
from maniforge.core.download import DownloadCache
from maniforge.core.errors import (
    BranchMergeConflictError,
    DownloadError,
    ForbiddenError,
    ForgeNetworkError,
    InputValidationError,
    ManiforgeError,
    NotFoundError,
    RateLimitExceededError,
    ValidationRejectedError,
)
from maniforge.core.fields import locale_prompt_fields, optional_locale_fields, field_spec
from maniforge.core.forge import Forge, GitHubClient, default_pull_request_title
from maniforge.core.locales import (
    add_locale,
    find_locale,
    new_locale,
    normalize_locale_tag,
    update_locale,
)
from maniforge.core.merge import (
    DEFAULT_LOCALE,
    ManifestMergeEngine,
    derive_package_identifier,
    describe_match_failure,
    ensure_multi_file,
    parse_installer_url_arguments,
    prepare_for_output,
    stamp_identifiers,
    uses_vanity_urls,
)
from maniforge.core.models import LocaleManifest, ManifestSet
from maniforge.core.serialization import (
    ManifestFormat,
    load_manifest_set,
    manifest_dir_path,
    read_manifest_directory,
    render_manifest_set,
    write_manifest_set,
)
from maniforge.core.settings import (
    Settings,
    load_settings,
    resolve_token,
    settings_path,
    store_token,
)
from maniforge.core.sniffer import PackageSniffer, Sniffer
from maniforge.core.validation import ManifestValidator

from .prompt import ConsolePrompter, Prompter, ScriptedPrompter

logger = logging.getLogger("maniforge.cli")

_ERROR_HINTS: tuple[tuple[type[ManiforgeError], str], ...] = (
    (RateLimitExceededError, "GitHub API rate limit exceeded; try again later"),
    (ForbiddenError, "GitHub refused the request; check the token and its scopes"),
    (BranchMergeConflictError, "Your fork has conflicts with upstream; sync it manually"),
    (ValidationRejectedError, "GitHub rejected the submitted content"),
    (ForgeNetworkError, "Unable to reach GitHub"),
    (NotFoundError, "Not found"),
    (DownloadError, "Installer download failed"),
    (InputValidationError, "Invalid input"),
)


@dataclass
class Services:
    """Collaborators a command runs against; tests swap in fakes."""

    settings: Settings
    downloader: DownloadCache
    sniffer: Sniffer
    prompter: Prompter
    forge_factory: Callable[[str | None], Forge]
    validator: ManifestValidator = field(default_factory=ManifestValidator)

    def forge(self, token: str | None = None) -> Forge:
        return self.forge_factory(token)


def build_services(args: argparse.Namespace) -> Services:
    settings = load_settings()

    def forge_factory(token: str | None) -> Forge:
        return GitHubClient(
            resolve_token(token),
            settings.repository.owner,
            settings.repository.name,
        )

    return Services(
        settings=settings,
        downloader=DownloadCache(
            settings.download.directory, max_size_mb=settings.download.max_size_mb
        ),
        sniffer=PackageSniffer(),
        prompter=ScriptedPrompter() if getattr(args, "no_prompt", False) else ConsolePrompter(),
        forge_factory=forge_factory,
    )


def _configure_logging(verbose: bool) -> None:
    level_name = os.environ.get("MANIFORGE_LOG", "INFO").upper()
    level = logging.DEBUG if verbose else getattr(logging, level_name, logging.INFO)
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")
    logging.getLogger("maniforge").setLevel(level)


def _label(name: str) -> str:
    return LocaleManifest.model_fields[name].alias or name


def _format(args: argparse.Namespace, services: Services) -> ManifestFormat:
    value = getattr(args, "format", None)
    return ManifestFormat(value) if value else services.settings.manifest.format


def _fetch(forge: Forge, fuzzy_id: str, version: str | None) -> tuple[str, str, ManifestSet]:
    package_identifier = forge.find_package_id(fuzzy_id)
    if not package_identifier:
        raise NotFoundError(f"Package {fuzzy_id} was not found in the repository", 404)
    version = version or forge.get_latest_version(package_identifier)
    texts = forge.get_manifest_content(package_identifier, version)
    return package_identifier, version, load_manifest_set(texts)


def _finish(
    args: argparse.Namespace,
    services: Services,
    manifest_set: ManifestSet,
    *,
    kind: str,
    replace_version: str | None = None,
) -> int:
    """Preview, save, validate and optionally submit the manifests."""
    fmt = _format(args, services)
    package_identifier = manifest_set.package_identifier or ""
    package_version = manifest_set.package_version or ""
    for name, text in render_manifest_set(manifest_set, fmt).items():
        print(f"==> {name}\n{text}")

    output_dir = Path(args.out or ".") / manifest_dir_path(package_identifier, package_version)
    write_manifest_set(manifest_set, output_dir, fmt)
    logger.info("Manifests saved to %s", output_dir)

    valid, messages = services.validator.validate_directory(output_dir)
    if not valid:
        for message in messages:
            logger.error("Manifest validation failed: %s", message)
        return 1

    if not getattr(args, "submit", False):
        return 0
    title = args.prtitle or default_pull_request_title(kind, package_identifier, package_version)
    pull_request = services.forge(args.token).submit_pull_request(
        manifest_set,
        via_fork=not args.no_fork,
        title=title,
        replace_version=replace_version,
        fmt=fmt,
    )
    print(f"Pull request #{pull_request.number}: {pull_request.url}")
    return 0


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------


def run_new(args: argparse.Namespace, services: Services) -> int:
    """Create manifests for a package that is not yet in the repository."""
    prompter = services.prompter
    urls = list(args.urls or [])
    if not urls:
        urls = [prompter.ask("InstallerUrl") or ""]
    engine = ManifestMergeEngine(services.downloader, services.sniffer)
    skeleton = engine.create_new(parse_installer_url_arguments(urls))

    locale = normalize_locale_tag(
        prompter.ask("PackageLocale", args.locale or DEFAULT_LOCALE, check=normalize_locale_tag)
        or DEFAULT_LOCALE
    )
    seeded = skeleton.default_locale
    publisher = prompter.ask("Publisher", args.publisher or seeded.publisher) or ""  # type: ignore[union-attr]
    package_name = prompter.ask("PackageName", args.name or seeded.package_name) or ""  # type: ignore[union-attr]
    package_identifier = prompter.ask(
        "PackageIdentifier", args.id or derive_package_identifier(publisher, package_name)
    ) or ""
    package_version = prompter.ask(
        "PackageVersion", args.version or skeleton.version.package_version  # type: ignore[union-attr]
    ) or ""
    license_name = prompter.ask("License", args.license)
    short_description = prompter.ask(
        "ShortDescription", args.short_description or seeded.short_description  # type: ignore[union-attr]
    )

    if args.submit and services.forge(args.token).version_exists(package_identifier, package_version):
        raise InputValidationError(
            f"{package_identifier} version {package_version} already exists; use 'update'"
        )

    default_locale = skeleton.default_locale.model_copy(  # type: ignore[union-attr]
        update={
            "package_locale": locale,
            "publisher": publisher,
            "package_name": package_name,
            "license": license_name,
            "short_description": short_description,
        }
    )
    version = skeleton.version.model_copy(update={"default_locale": locale})  # type: ignore[union-attr]
    manifest_set = stamp_identifiers(
        skeleton.evolve(version=version, default_locale=default_locale),
        package_identifier,
        package_version,
    )
    installer_count = len(manifest_set.installer.installers)  # type: ignore[union-attr]
    manifest_set = prepare_for_output(manifest_set, promote=installer_count > 1)
    return _finish(args, services, manifest_set, kind="new")


def run_update(args: argparse.Namespace, services: Services) -> int:
    """Update an existing package with new installer URLs and version."""
    forge = services.forge(args.token)
    package_identifier, previous_version, existing = _fetch(forge, args.id, None)
    version = args.version or previous_version

    replace_version = None
    if args.replace is not None:
        replace_version = args.replace or previous_version
        if replace_version == version:
            raise InputValidationError("A version cannot replace itself")
        if not forge.version_exists(package_identifier, replace_version):
            raise NotFoundError(
                f"{package_identifier} version {replace_version} does not exist", 404
            )

    arguments = parse_installer_url_arguments(args.urls or [], args.display_version)
    engine = ManifestMergeEngine(services.downloader, services.sniffer)
    outcome = engine.update(
        existing,
        arguments,
        package_identifier=package_identifier,
        package_version=version,
        release_notes_url=args.release_notes_url,
        release_date=args.release_date,
    )
    if not outcome.success:
        for message in describe_match_failure(outcome.match):
            logger.error("%s", message)
        return 1

    if args.submit:
        if not outcome.hash_changed:
            logger.error(
                "No installer hash changed for %s %s; refusing to submit an identical update",
                package_identifier,
                version,
            )
            return 1
        new_installers = outcome.manifests.installer.installers  # type: ignore[union-attr]
        if (
            replace_version is None
            and version != previous_version
            and uses_vanity_urls(outcome.previous_installers, new_installers)
        ):
            logger.warning(
                "Installer URLs are unchanged from version %s; that version will be replaced",
                previous_version,
            )
            replace_version = previous_version
    return _finish(
        args, services, outcome.manifests, kind="update", replace_version=replace_version
    )


def _prompt_locale_fields(
    prompter: Prompter, locale, names: tuple[str, ...], *, required: bool
) -> dict[str, str | None]:
    answers: dict[str, str | None] = {}
    for name in names:
        if name == "package_locale" or field_spec("locale", name).kind != "scalar":
            continue
        current = getattr(locale, name)
        answers[name] = prompter.ask(_label(name), current, required=required)
    return answers


def run_new_locale(args: argparse.Namespace, services: Services) -> int:
    """Add a translated locale manifest to an existing package version."""
    prompter = services.prompter
    forge = services.forge(args.token)
    package_identifier, version, manifest_set = _fetch(forge, args.id, args.version)
    manifest_set = stamp_identifiers(ensure_multi_file(manifest_set), package_identifier)

    tag = prompter.ask("PackageLocale", args.locale, check=normalize_locale_tag) or ""
    locale = new_locale(manifest_set, tag, args.reference_locale)
    answers = _prompt_locale_fields(prompter, locale, locale_prompt_fields(), required=True)
    if args.all_fields:
        answers.update(
            _prompt_locale_fields(prompter, locale, optional_locale_fields(), required=False)
        )
    locale = locale.model_copy(update=answers)
    manifest_set = prepare_for_output(add_locale(manifest_set, locale), promote=False)
    return _finish(args, services, manifest_set, kind="new-locale")


def run_update_locale(args: argparse.Namespace, services: Services) -> int:
    """Edit an existing locale manifest of a package version."""
    prompter = services.prompter
    forge = services.forge(args.token)
    package_identifier, version, manifest_set = _fetch(forge, args.id, args.version)
    manifest_set = stamp_identifiers(ensure_multi_file(manifest_set), package_identifier)

    tag = prompter.ask("PackageLocale", args.locale, check=normalize_locale_tag) or ""
    target = find_locale(manifest_set, tag)
    if target is None:
        raise InputValidationError(f"Locale {tag} does not exist in {package_identifier} {version}")
    names = locale_prompt_fields() + (optional_locale_fields() if args.all_fields else ())
    answers = _prompt_locale_fields(prompter, target, names, required=False)
    manifest_set = prepare_for_output(update_locale(manifest_set, tag, **answers), promote=False)
    return _finish(args, services, manifest_set, kind="update-locale")


def run_submit(args: argparse.Namespace, services: Services) -> int:
    """Validate a local manifest directory and open a pull request for it."""
    directory = Path(args.path)
    valid, messages = services.validator.validate_directory(directory)
    if not valid:
        for message in messages:
            logger.error("Manifest validation failed: %s", message)
        return 1
    manifest_set = read_manifest_directory(directory)
    package_identifier = manifest_set.package_identifier or ""
    package_version = manifest_set.package_version or ""
    forge = services.forge(args.token)
    if args.replace:
        if args.replace == package_version:
            raise InputValidationError("A version cannot replace itself")
        if not forge.version_exists(package_identifier, args.replace):
            raise NotFoundError(f"{package_identifier} version {args.replace} does not exist", 404)
    title = args.prtitle or default_pull_request_title("update", package_identifier, package_version)
    pull_request = forge.submit_pull_request(
        manifest_set,
        via_fork=not args.no_fork,
        title=title,
        replace_version=args.replace,
        fmt=_format(args, services),
    )
    print(f"Pull request #{pull_request.number}: {pull_request.url}")
    return 0


def run_show(args: argparse.Namespace, services: Services) -> int:
    """Print the manifests of a package version from the repository."""
    forge = services.forge(args.token)
    package_identifier = forge.find_package_id(args.id)
    if not package_identifier:
        raise NotFoundError(f"Package {args.id} was not found in the repository", 404)
    for text in forge.get_manifest_content(package_identifier, args.version):
        print(text.rstrip("\n"))
        print()
    return 0


def run_cache(args: argparse.Namespace, services: Services) -> int:
    cache = services.downloader
    if args.action == "list":
        files = cache.list_files()
        if not files:
            print(f"No cached installers in {cache.directory}")
        for path in files:
            print(f"{path.stat().st_size:>12}  {path}")
        return 0
    days = None if args.all else (args.days or services.settings.cleanup_days)
    removed = cache.clean(days)
    print(f"Removed {len(removed)} cached installer(s)")
    return 0


def run_settings(args: argparse.Namespace, services: Services) -> int:
    path = settings_path()
    if args.store_token:
        stored = store_token(args.store_token, path)
        print(f"Token stored in {stored}")
    print(f"Settings file: {path}{'' if path.exists() else ' (not created)'}")
    print(json.dumps(services.settings.model_dump(mode="json"), indent=2))
    return 0


# -----------------------------------------------------------------------------
# Parser
# -----------------------------------------------------------------------------


def _add_output_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-o", "--out", help="Directory to save manifests under")
    parser.add_argument("--format", choices=[item.value for item in ManifestFormat])
    parser.add_argument("-s", "--submit", action="store_true", help="Open a pull request")
    parser.add_argument("--prtitle", help="Pull request title")
    parser.add_argument("--no-fork", action="store_true", help="Push the branch upstream")


def _add_token_option(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-t", "--token", help="GitHub token (else GITHUB_TOKEN/GH_TOKEN)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="maniforge", description=__doc__)
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument(
        "--no-prompt", action="store_true", help="Fail instead of prompting for missing values"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    new = subparsers.add_parser("new", help="Create manifests for a new package")
    new.add_argument("urls", nargs="*", help="Installer URLs (url[|arch][|scope][|displayVersion])")
    new.add_argument("--id", help="Package identifier")
    new.add_argument("--version", dest="version", help="Package version")
    new.add_argument("--publisher")
    new.add_argument("--name", help="Package name")
    new.add_argument("--license")
    new.add_argument("--short-description", dest="short_description")
    new.add_argument("--locale", help=f"Default locale (default {DEFAULT_LOCALE})")
    _add_output_options(new)
    _add_token_option(new)
    new.set_defaults(handler=run_new)

    update = subparsers.add_parser("update", help="Update an existing package")
    update.add_argument("id", help="Package identifier")
    update.add_argument("urls", nargs="*", help="Installer URLs (url[|arch][|scope][|displayVersion])")
    update.add_argument("-v", "--version", dest="version", help="New package version")
    update.add_argument("-d", "--display-version", dest="display_version")
    update.add_argument("--release-notes-url", dest="release_notes_url")
    update.add_argument("--release-date", dest="release_date", type=date.fromisoformat)
    update.add_argument(
        "-r",
        "--replace",
        nargs="?",
        const="",
        help="Replace the previous (or the given) version in the same pull request",
    )
    _add_output_options(update)
    _add_token_option(update)
    update.set_defaults(handler=run_update)

    for name, handler, help_text in (
        ("new-locale", run_new_locale, "Add a locale to an existing package"),
        ("update-locale", run_update_locale, "Edit a locale of an existing package"),
    ):
        locale_parser = subparsers.add_parser(name, help=help_text)
        locale_parser.add_argument("id", help="Package identifier")
        locale_parser.add_argument("-v", "--version", dest="version", help="Package version")
        locale_parser.add_argument("-l", "--locale", help="Locale tag")
        if name == "new-locale":
            locale_parser.add_argument(
                "-r", "--reference-locale", dest="reference_locale", help="Locale to copy from"
            )
        locale_parser.add_argument(
            "-a", "--all-fields", dest="all_fields", action="store_true",
            help="Also prompt for optional fields",
        )
        _add_output_options(locale_parser)
        _add_token_option(locale_parser)
        locale_parser.set_defaults(handler=handler)

    submit = subparsers.add_parser("submit", help="Submit a local manifest directory")
    submit.add_argument("path", help="Directory holding the manifests")
    submit.add_argument("--prtitle", help="Pull request title")
    submit.add_argument("-r", "--replace", help="Version to replace")
    submit.add_argument("--no-fork", action="store_true")
    submit.add_argument("--format", choices=[item.value for item in ManifestFormat])
    _add_token_option(submit)
    submit.set_defaults(handler=run_submit)

    show = subparsers.add_parser("show", help="Print manifests from the repository")
    show.add_argument("id", help="Package identifier")
    show.add_argument("-v", "--version", dest="version")
    _add_token_option(show)
    show.set_defaults(handler=run_show)

    cache = subparsers.add_parser("cache", help="Manage downloaded installers")
    cache.add_argument("action", choices=["list", "clean"])
    cache.add_argument("--days", type=int, help="Only clean files older than N days")
    cache.add_argument("--all", action="store_true", help="Clean every cached file")
    cache.set_defaults(handler=run_cache)

    settings = subparsers.add_parser("settings", help="Show the resolved settings")
    settings.add_argument("--store-token", dest="store_token", help="Cache a GitHub token")
    settings.set_defaults(handler=run_settings)
    return parser


def _hint(exc: ManiforgeError) -> str | None:
    for error_type, hint in _ERROR_HINTS:
        if isinstance(exc, error_type):
            return hint
    return None


def main(argv: list[str] | None = None, services: Services | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    code = 1
    try:
        services = services or build_services(args)
        observability.initialize_tracing(disabled=services.settings.telemetry.disable)
        code = args.handler(args, services)
    except ManiforgeError as exc:
        hint = _hint(exc)
        if hint:
            logger.error("%s: %s", hint, exc)
        else:
            logger.error("%s", exc)
    except Exception:
        logger.exception("Unexpected error while running %s", args.command)
    observability.record_command_executed(args.command, code == 0, getattr(args, "id", None))
    return code


if __name__ == "__main__":
    sys.exit(main())
