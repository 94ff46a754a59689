import setuptools

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setuptools.setup(
    name='vonMisesMixtureEM',
    version='0.1.0',
    description='python/pyTorch code for fitting, evaluating and sampling mixtures of von Mises distributions',
    long_description=long_description,
    long_description_content_type="text/markdown",
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    package_dir={"": "src"},
    packages=setuptools.find_packages(where="src"),
    python_requires=">=3.9",
    license='MIT',
    install_requires=['numpy>=1.25', 'scipy', 'torch', 'joblib'],
    extras_require={'test': ['pytest']},
)
