from setuptools import setup, find_packages

setup(
    name='ghr-installer',
    version='0.1.0',
    description='Install and track prebuilt binaries from GitHub releases',
    package_dir={'': 'src'},
    packages=find_packages('src'),
    python_requires='>=3.10',
    install_requires=[
        'requests',
        'pick',
        'PyYAML',
        'urllib3',
        'platformdirs',
        'rich',
    ],
    extras_require={
        'test': [
            'pytest',
            'pytest-mock',
        ],
    },
    entry_points={
        'console_scripts': [
            'ghr-installer=ghr_installer.cli:main',
        ],
    },
)
