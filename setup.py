from setuptools import setup, find_packages

setup(
    name="scanmesh-service",
    version="1.0.0",
    description="Streaming surface mesh and ceiling boundary reconstruction from depth-sensor mesh fragments",
    packages=find_packages(include=["scanmesh", "scanmesh.*"]),
    python_requires=">=3.9",
    install_requires=[
        "numpy>=1.24",
        "aio-pika>=9.0",
        "msgpack>=1.0",
        "rerun-sdk>=0.23",
        "colorama>=0.4.6",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    entry_points={
        "console_scripts": [
            "scanmesh=scanmesh.main:run",
        ],
    },
    author="WorldSystem Team",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)
