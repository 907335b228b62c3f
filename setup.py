from setuptools import setup


setup(
    name="sheet-shaper",
    version="0.1.0",
    description="Detect the real header of a messy spreadsheet, then sanitize, filter and re-export its table",
    packages=["sheet_shaper"],
    install_requires=[
        "pandas",
        "chardet",
        "openpyxl",
        "streamlit",
        "requests",
        "pypdf",
    ],
    extras_require={
        "excel-legacy": ["xlrd"],
        "ods": ["odfpy"],
        "all": ["xlrd", "odfpy"],
    },
    entry_points={
        "console_scripts": [
            "sheet-shaper=sheet_shaper.cli:main",
        ]
    },
)
