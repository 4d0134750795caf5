# src/ghr_installer/menu_install.py

from typing import Dict, List, Optional, Tuple

from pick import pick

from ghr_installer.constants import (
    INSTALL_MODE_APT,
    INSTALL_MODE_GITHUB,
    INSTALL_MODE_NEWER,
)
from ghr_installer.install.interfaces import PackageCheck

MENU_INDIVIDUAL = "individual"

INSTALL_MENU_OPTIONS: List[Tuple[str, Optional[str]]] = [
    ("Install all newer versions", INSTALL_MODE_NEWER),
    ("Install all GitHub versions", INSTALL_MODE_GITHUB),
    ("Install all APT versions", INSTALL_MODE_APT),
    ("Choose individually", MENU_INDIVIDUAL),
    ("Cancel", None),
]


def select_install_mode(install_dir: str) -> Optional[str]:
    """
    Ask how to install the checked packages.

    Returns:
        str or None: "newer", "github", "apt" or "individual"; None when cancelled.
    """
    title = "Select installation method (press ENTER to confirm):"
    labels = [
        f"{label} (to {install_dir})" if mode == INSTALL_MODE_GITHUB else label
        for label, mode in INSTALL_MENU_OPTIONS
    ]
    _option, index = pick(labels, title, indicator="*")
    return INSTALL_MENU_OPTIONS[int(index)][1]  # type: ignore[arg-type]


def select_package_source(check: PackageCheck) -> Optional[str]:
    """
    Ask which source to install a single package from.

    Returns:
        str or None: "github" or "apt", or None to skip the package.
    """
    choices: List[Tuple[str, Optional[str]]] = []
    if check.ok:
        choices.append(
            (f"Install GitHub version ({check.github_version})", INSTALL_MODE_GITHUB)
        )
    if check.apt_version:
        choices.append((f"Install APT version ({check.apt_version})", INSTALL_MODE_APT))
    if not choices:
        return None
    choices.append(("Skip", None))

    title = f"{check.name}:"
    _option, index = pick([label for label, _ in choices], title, indicator="*")
    return choices[int(index)][1]  # type: ignore[arg-type]


def choose_individually(checks: Dict[str, PackageCheck]) -> Dict[str, str]:
    """
    Walk through every checked package and collect the chosen source.

    Returns:
        dict: Package name mapped to "github" or "apt" for packages not skipped.
    """
    selections: Dict[str, str] = {}
    for name, check in checks.items():
        source = select_package_source(check)
        if source is None:
            print(f"Skipping {name}")
            continue
        selections[name] = source
    return selections
