from setuptools import setup

setup(
    name='xnft-bridge-harness',
    version='0.1.0',
    description='Cross-ledger NFT bridging verification harness',
    author='xnft contributors',
    package_dir={'xnft': 'src/xnft'},
    packages=['xnft', 'xnft.cli', 'xnft.devnet'],
    include_package_data=True,
    python_requires='>=3.9',
    install_requires=[
        'click>=7.0',
        'rich>=10.0',
        'aiohttp>=3.8',
        'cryptography>=41.0',
    ],
    extras_require={
        'test': [
            'pytest>=7.0',
            'pytest-asyncio>=0.21',
        ],
    },
    entry_points={
        'console_scripts': [
            'xnft = xnft.cli.main:cli'
        ]
    },
    classifiers=[
        'Programming Language :: Python :: 3',
    ],
)
