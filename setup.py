import re

from setuptools import find_packages, setup

version = re.search('^__version__\\s*=\\s*"(.*)"', open("intervalcron/__init__.py").read(), re.M).group(1)

setup(
    name="intervalcron",
    version=version,
    description="Fixed-interval task scheduler with per-task failure isolation and clean shutdown",
    packages=find_packages(include=["intervalcron", "intervalcron.*"]),
    install_requires=[
        "arrow",
        "pyhumps",
        "pyyaml",
        "dacite",
        "prometheus-client>=0.20",
        "psutil",
    ],
    extras_require={"tests": ["pytest"]},
    python_requires=">=3.9",
)
