import setuptools

from ltsupgrade import defaults

NAME = "ubuntu-lts-upgrader"

INSTALL_REQUIRES = open("requirements.txt").read().rstrip("\n").split("\n")


def split_link_deps(reqs_filename):
    """Read requirements reqs_filename and split into pkgs and links

    :return: list of package defs and link defs
    """
    pkgs = []
    links = []
    for line in open(reqs_filename).readlines():
        if line.startswith("git") or line.startswith("http"):
            links.append(line)
        else:
            pkgs.append(line)
    return pkgs, links


TEST_REQUIRES, TEST_LINKS = split_link_deps("test-requirements.txt")


def _get_data_files():
    return [
        (defaults.UPGRADER_ETC_PATH, [defaults.CONFIG_FILE]),
    ]


setuptools.setup(
    name=NAME,
    version="1.0",
    packages=setuptools.find_packages(
        exclude=[
            "*.testing",
            "tests.*",
            "*.tests",
            "tests",
        ]
    ),
    data_files=_get_data_files(),
    install_requires=INSTALL_REQUIRES,
    dependency_links=TEST_LINKS,
    extras_require=dict(test=TEST_REQUIRES),
    description=(
        "Unattended, reboot-resumable upgrade of Ubuntu 20.04 to 24.04 LTS"
    ),
    license="GPLv3",
    entry_points={
        "console_scripts": [
            "ubuntu-lts-upgrade=ltsupgrade.cli:main",
        ]
    },
)
