from setuptools import setup, find_packages

setup(
    name='s3mirror',
    version='0.1.0',
    description='Mirror GitHub release binaries into S3-compatible object storage',
    package_dir={'': 'src'},
    packages=find_packages('src'),
    python_requires='>=3.10',
    install_requires=[
        'requests',
        'PyYAML',
        'urllib3',
        'packaging',
        'platformdirs',
        'rich',
        'boto3',
        'botocore',
    ],
    extras_require={
        'test': [
            'pytest<9',
            'pytest-mock',
        ],
    },
    entry_points={
        'console_scripts': [
            's3mirror=s3mirror.cli:main',
        ],
    },
)
