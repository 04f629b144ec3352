from setuptools import setup

setup(
    name="homelab",
    version="0.1.0",
    packages=["homelab", "homelab.workflow", "homelab.notifications"],
    install_requires=[
        "rich>=13.0.0",
        "click>=8.0",
        "requests>=2.28",
        "pyyaml>=6.0",
        "toml>=0.10",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "pyfakefs>=5.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "homelab=homelab.__main__:main",
        ]
    },
  )
