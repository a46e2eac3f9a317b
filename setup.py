"""
Setup file.
"""

from setuptools import setup

KEYWORDS = "android bootstrap proot termux static-linking sysroot toolchain packaging"


if __name__ == "__main__":
    setup(
        keywords=KEYWORDS,
        package_data={"bootforge": ["py.typed"]},
        include_package_data=True)
