from setuptools import setup, find_packages  # ignore: type

setup(
    name="index_updater",
    version="1.0.0",
    description="Keep a search index converged on its desired configuration and migrate it without downtime",
    packages=find_packages(exclude=("tests", "tests.*")),
    install_requires=["requests", "pyyaml", "Click", "cerberus"],
    extras_require={
        "test": ["pytest", "pytest-mock", "requests-mock"],
    },
    entry_points={
        "console_scripts": [
            "index-updater = index_updater.cli:main",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Software Development :: Build Tools",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "License :: OSI Approved :: Apache Software License",
    ],
)
