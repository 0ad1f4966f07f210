#!python


__project__ = "alphashaker"
__version__ = "0.3.0"
__license__ = "Apache"
__description__ = "Target-decoy validation of multi-engine peptide identifications"
__author__ = "Mann Labs"
__author_email__ = "opensource@alphapept.com"
__github__ = "https://github.com/MannLabs/alphashaker"
__keywords__ = [
    "bioinformatics",
    "software",
    "AlphaPept ecosystem",
    "false discovery rate",
    "protein inference",
]
__python_version__ = ">=3.10"
__classifiers__ = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "License :: OSI Approved :: Apache Software License",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Topic :: Scientific/Engineering :: Bio-Informatics",
]
__console_scripts__ = [
    "alphashaker=alphashaker.cli:run",
]
__urls__ = {
    "Mann Labs at MPIB": "https://www.biochem.mpg.de/mann",
    "GitHub": __github__,
}
