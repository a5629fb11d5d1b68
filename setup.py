import os
from setuptools import setup

short_desc="Content-addressed builds and development shells from declarative manifests"

try:
    fname='README.rst'
    long_desc = open(os.path.join(os.path.dirname(__file__), fname)).read()
except IOError:
    long_desc=short_desc

setup(
    name = "hashenv",
    version = "0.1",
    author = "hashenv developers",
    description = (short_desc),
    license = "BSD",
    keywords = "build reproducibility content-addressed store",
    scripts=['bin/hashenv'],
    packages=[
          'hashenv',
          'hashenv.cli',
          'hashenv.cli.test',
          'hashenv.core',
          'hashenv.core.test',
          'hashenv.formats',
          'hashenv.formats.tests',
          'hashenv.test',
          'hashenv.util',
          ],
    package_data={
        "hashenv.formats": ["config.example.yaml"],
        "hashenv.util": ["logging_config.yaml"],
        },
    python_requires=">=3.10",
    install_requires=[
        "PyYAML",
        "jsonschema",
        ],
    extras_require={
        "test": ["pytest", "mock"],
        },
    long_description=long_desc,
    classifiers=[
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Topic :: Software Development :: Build Tools",
    "License :: OSI Approved :: BSD License",
    ],
)
