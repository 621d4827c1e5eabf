# setup.py
from setuptools import setup, find_packages, Extension
from Cython.Build import cythonize
import os

# Full path to the pyx
pyx_path = os.path.join("jsbc", "engine", "codec_cy.pyx")

setup(
    name="jsbc",
    version="0.1.0",
    description="Script engine bytecode bridge: compile, gate, inspect and run bytecode buffers",
    python_requires=">=3.9",
    packages=find_packages(include=["jsbc", "jsbc.*"]),
    package_data={"jsbc.engine": ["defs/*.def"]},
    ext_modules=cythonize(
        Extension(
            name="jsbc.engine.codec_cy",  # module path for import
            sources=[pyx_path],
        ),
        compiler_directives={'language_level': "3", "boundscheck": False, "wraparound": False}
    ),
    extras_require={"test": ["pytest>=7", "hypothesis>=6"]},
    entry_points={"console_scripts": ["jsbc=jsbc.cli:main"]},
    zip_safe=False,
)
