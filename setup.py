from setuptools import setup, find_packages

setup(
    name="galaswap-arb-bot",
    version="1.0.0",
    description="Resilient GalaSwap V3 API access layer for arbitrage trading",
    author="GalaSwap Bot Team",
    python_requires=">=3.10",
    packages=find_packages(where="src"),
    py_modules=["main"],
    package_dir={"": "src"},
    install_requires=[
        line.strip()
        for line in open("requirements.txt")
        if line.strip() and not line.startswith("#")
    ],
    extras_require={
        "dev": [
            line.strip()
            for line in open("requirements-dev.txt")
            if line.strip() and not line.startswith(("#", "-r"))
        ],
    },
    entry_points={
        "console_scripts": [
            "galaswap-bot=main:main",
        ],
    },
)
