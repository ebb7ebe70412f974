from setuptools import setup, find_packages

setup(
    name='depfetch',
    version='0.1.0',
    package_dir={'': 'src'},
    packages=find_packages('src'),
    python_requires='>=3.10',
    install_requires=[
        'aiohttp',
        'aiofiles',
        'packaging',
        'platformdirs',
        'PyYAML',
        'rich',
        'semantic_version',
    ],
    extras_require={
        'test': [
            'pytest',
            'pytest-asyncio',
            'pytest-mock',
        ],
    },
)
