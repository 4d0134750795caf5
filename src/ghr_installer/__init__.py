"""ghr-installer: install and track prebuilt binaries from GitHub releases."""
