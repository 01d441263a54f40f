from setuptools import setup


setup(
    name="listing-intake",
    version="0.1.0",
    description="Map, validate and import business-location spreadsheets with a field-level audit trail",
    packages=["listing_intake"],
    install_requires=[
        "pandas",
        "chardet",
        "openpyxl",
    ],
    extras_require={
        "excel-legacy": ["xlrd"],
        "ods": ["odfpy"],
        "all": ["xlrd", "odfpy"],
    },
    entry_points={
        "console_scripts": [
            "listing-intake=listing_intake.cli:main",
        ]
    },
)
