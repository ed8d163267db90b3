from setuptools import setup

with open("README.md") as f:
    long_description = f.read()

setup(
    name="RNAsecondary",
    version="0.1.0",
    packages=["rnasecondary"],
    package_dir={"": "src"},
    description="RNA secondary structure formats (BPSEQ, CT, dot-bracket) and pseudoknot finders",
    long_description=long_description,
    long_description_content_type="text/markdown",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Environment :: Console",
        "Intended Audience :: Science/Research",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Topic :: Scientific/Engineering :: Bio-Informatics",
    ],
    entry_points={
        "console_scripts": [
            "secondary-converter=rnasecondary.converter:main",
            "pseudoknot-finder=rnasecondary.pseudoknots:main",
        ]
    },
    install_requires=[
        "graphviz",
        "ordered-set",
        "orjson",
        "pulp",
    ],
    extras_require={"test": ["hypothesis", "pytest"]},
)
