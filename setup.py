from setuptools import setup, find_packages

from readpe import __version__

setup(
    name="readpe",
    version=__version__,
    description=
        "Decode and print the DOS, COFF and section headers of PE files",
    long_description=open("README.rst").read(),
    license="MIT",
    packages=find_packages(),
    install_requires=[
        "attrs",
        "click",
        "rich",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "readpe = readpe.cmd.readpe:main",
        ],
    },
    python_requires=">=3.8",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Operating System :: OS Independent",
        "Topic :: Software Development :: Disassemblers",
        "Topic :: Utilities",
        ],
)
