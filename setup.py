from setuptools import find_packages, setup

tests_require = [
    'pytest>=7.0',
]

setup(
    name='codechain-harness',
    version='0.1.0',
    description='Spawn and drive local CodeChain nodes from integration tests',
    packages=find_packages('src'),
    package_dir={'': 'src'},
    python_requires='>=3.9',
    install_requires=[
        'requests>=2.21.0',
        'retrying>=1.3.3',
    ],
    tests_require=tests_require,
    extras_require={
        'test': tests_require,
    },
)
