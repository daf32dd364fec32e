import setuptools

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setuptools.setup(
    name="gpu_hashtable",
    version="0.1.0",
    author="tinker495",
    author_email="wjdrbtjr495@gmail.com",
    description="Batched uint32 hash table resident in accelerator memory, built on JAX",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=setuptools.find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "jax>=0.6.1",
        "chex>=0.1.0",
        "numpy>=1.24",
        "absl-py>=1.0.0",
        "typing_extensions>=4.5.0",
        "rich>=13.0.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
        ],
        "cuda": [
            "jax[cuda12]>=0.6.1",
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Topic :: Scientific/Engineering",
    ],
    python_requires=">=3.10",
)
