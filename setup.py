from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="clubcast",
    version="0.1.0",
    author="Laurence Stephan",
    author_email="your.email@example.com",
    description="Consent-scoped campaign mailing with sponsor quotas for Flask association portals",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/yourusername/clubcast",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Communications :: Email",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Framework :: Flask",
    ],
    python_requires=">=3.9",
    install_requires=[
        "Flask>=3.0.0",
        "MarkupSafe>=2.1",
        "python-dotenv>=1.0.0",
        "tzdata>=2023.3",
    ],
    extras_require={
        "resend": [
            "resend>=0.7",
        ],
        "ses": [
            "boto3>=1.28",
        ],
        "dev": [
            "pytest>=7.0",
            "pytest-flask>=1.2",
            "black>=22.0",
            "flake8>=5.0",
        ],
    },
    zip_safe=False,
)
