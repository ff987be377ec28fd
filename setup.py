from setuptools import setup, find_packages

setup(
    name='checkup',
    version='0.1.0',
    description='Caching proxy for release metadata of GitHub, GitLab, Forgejo/Gitea and cgit',
    package_dir={'': 'src'},
    packages=find_packages('src'),
    python_requires='>=3.9',
    install_requires=[
        'aiohttp>=3.9',
        'aiofiles',
        'beautifulsoup4',
        'platformdirs',
        'PyYAML',
        'rich',
    ],
    extras_require={
        'test': [
            'pytest<9',
            'pytest-asyncio',
            'pytest-mock',
        ],
    },
    entry_points={
        'console_scripts': [
            'checkup=checkup.cli:main',
        ],
    },
)
