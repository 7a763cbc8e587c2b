import os
import re

from setuptools import setup, find_packages


here = os.path.abspath(os.path.dirname(__file__))
with open(os.path.join(here, "src", "ufofmt", "_version.py"), encoding="utf-8") as f:
    version = re.search(r'__version__ = "(.+)"', f.read()).group(1)


setup(
    name="ufofmt",
    version=version,
    description=("Formatter that rewrites the glyph, property list and "
                 "feature files inside of a UFO with a deterministic "
                 "XML formatting."),
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    entry_points={
        'console_scripts': [
            "ufofmt = ufofmt:main",
        ]
    },
    extras_require={
        "test": ["pytest"],
    },
    test_suite="tests",
    license="Apache-2.0",
    platforms=["Any"],
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: Developers",
        "Intended Audience :: End Users/Desktop",
        "License :: OSI Approved :: Apache Software License",
        "Natural Language :: English",
        "Operating System :: OS Independent",
        "Programming Language :: Python",
        "Programming Language :: Python :: 3",
        "Topic :: Text Processing :: Fonts",
        "Topic :: Multimedia :: Graphics",
    ],
    python_requires='>=3.7',
    zip_safe=True,
)
