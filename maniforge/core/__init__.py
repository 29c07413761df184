"""maniforge core package - manifest model, reconciliation and forge access."""

from .download import DownloadCache
from .errors import (
    InputValidationError,
    LocaleError,
    ManiforgeError,
    ManifestFormatError,
    PackageParseError,
)
from .forge import GitHubClient, PullRequest, default_pull_request_title
from .locales import (
    add_locale,
    new_locale,
    normalize_locale_tag,
    populate_from_reference,
    resolve_reference_locale,
    update_locale,
)
from .matcher import InstallerUrlArgument, MatchResult, match_installers
from .merge import (
    ManifestMergeEngine,
    convert_singleton_to_multi_file,
    ensure_manifest_version_consistency,
    parse_installer_url_arguments,
    stamp_identifiers,
    verify_installer_hash_changed,
)
from .models import (
    CURRENT_MANIFEST_VERSION,
    DefaultLocaleManifest,
    Installer,
    InstallerManifest,
    LocaleManifest,
    ManifestSet,
    SingletonManifest,
    VersionManifest,
    parse_manifest,
)
from .reconcile import (
    remove_empty_fields,
    shift_installer_fields_to_root_level,
    shift_root_fields_to_installer_level,
)
from .serialization import ManifestFormat, deserialize, serialize
from .settings import Settings, load_settings
from .sniffer import DetectedInstaller, PackageSniffer
from .validation import ManifestValidator

__all__ = [
    "CURRENT_MANIFEST_VERSION",
    "DefaultLocaleManifest",
    "DetectedInstaller",
    "DownloadCache",
    "GitHubClient",
    "InputValidationError",
    "Installer",
    "InstallerManifest",
    "InstallerUrlArgument",
    "LocaleError",
    "LocaleManifest",
    "ManiforgeError",
    "ManifestFormat",
    "ManifestFormatError",
    "ManifestMergeEngine",
    "ManifestSet",
    "ManifestValidator",
    "MatchResult",
    "PackageParseError",
    "PackageSniffer",
    "PullRequest",
    "Settings",
    "SingletonManifest",
    "VersionManifest",
    "add_locale",
    "convert_singleton_to_multi_file",
    "default_pull_request_title",
    "deserialize",
    "ensure_manifest_version_consistency",
    "load_settings",
    "match_installers",
    "new_locale",
    "normalize_locale_tag",
    "parse_installer_url_arguments",
    "parse_manifest",
    "populate_from_reference",
    "remove_empty_fields",
    "resolve_reference_locale",
    "serialize",
    "shift_installer_fields_to_root_level",
    "shift_root_fields_to_installer_level",
    "stamp_identifiers",
    "update_locale",
    "verify_installer_hash_changed",
]
