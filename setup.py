"""Set up the git-remote-s3 package."""
import json
from pathlib import Path

from setuptools import find_packages, setup

DESCRIPTION = (
    "A git remote helper that stores encrypted bundles"
    " in S3 buckets, a remote without a server."
)

REQUIREMENTS = [
    "aiobotocore>=2.1.0",
    "botocore",
    "aiofiles",
    "pydantic>=2.6.1",
    "python-dotenv>=0.19.0",
]

ROOT_DIR = Path(__file__).parent.resolve()
README_FILE = ROOT_DIR / "README.md"
LONG_DESCRIPTION = README_FILE.read_text(encoding="utf-8")
VERSION_FILE = ROOT_DIR / "git_remote_s3" / "VERSION"
VERSION = json.loads(VERSION_FILE.read_text(encoding="utf-8"))["version"]


setup(
    name="git-remote-s3",
    version=VERSION,
    description=DESCRIPTION,
    long_description=LONG_DESCRIPTION,
    long_description_content_type="text/markdown",
    url="http://github.com/dyno/git-remote-s3",
    license="MIT",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.9",
    include_package_data=True,
    package_data={"git_remote_s3": ["VERSION"]},
    install_requires=REQUIREMENTS,
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21.0",
        ],
    },
    zip_safe=False,
    entry_points={"console_scripts": ["git-remote-s3 = git_remote_s3.__main__:main"]},
)
