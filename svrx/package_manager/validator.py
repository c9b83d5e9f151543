"""PluginValidator — consistency checks on a materialized plugin manifest."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from svrx.package_manager import semver
from svrx.package_manager.manifest import package_name

if TYPE_CHECKING:
    from svrx.package_manager.manifest import PackageManifest


class PluginValidator:
    """Checks a PackageManifest against what the resolver expected to load.

    All validation is synchronous and has no side effects. Problems are
    returned, not raised: a plugin with an odd manifest still loads and
    the resolver logs each problem as a warning.
    """

    def validate(
        self,
        manifest: "PackageManifest",
        plugin: str,
        expected_version: Optional[str] = None,
    ) -> list[str]:
        """Run all checks.

        Returns:
            List of problem descriptions. Empty list means the manifest is consistent.

        Checks (in order):
            1. ``name`` follows the ``svrx-plugin-<plugin>`` convention
            2. ``version`` is valid semver (when present)
            3. ``version`` equals the cache directory it was resolved from
            4. The svrx range parses (when present)
        """
        problems: list[str] = []

        # 1. Naming convention
        expected_name = package_name(plugin)
        if manifest.name != expected_name:
            problems.append(
                f"Package name '{manifest.name}' does not match expected '{expected_name}'."
            )

        # 2. Version format
        if manifest.version is not None and semver.parse_version(manifest.version) is None:
            problems.append(f"Package version '{manifest.version}' is not valid semver.")

        # 3. Version vs. install directory
        if (
            expected_version is not None
            and manifest.version is not None
            and manifest.version != expected_version
        ):
            problems.append(
                f"Package declares version '{manifest.version}' but was resolved as "
                f"'{expected_version}'."
            )

        # 4. svrx range
        if manifest.svrx_range is not None and not semver.valid_range(manifest.svrx_range):
            problems.append(
                f"svrx compatibility range '{manifest.svrx_range}' cannot be parsed; "
                f"this version will never be selected automatically."
            )

        return problems
