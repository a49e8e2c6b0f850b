from setuptools import setup
from pathlib import Path

# Read README for long description
readme = Path(__file__).parent / "README.md"
long_description = readme.read_text() if readme.exists() else ""

setup(
    name='volume-snapshotter',
    version='1.0.0',
    description='Keep labelled block-storage volumes snapshotted and prune expired snapshots',
    long_description=long_description,
    long_description_content_type='text/markdown',
    # Sources live under apps/, like the other components
    packages=['snapshotter', 'snapshotter.clients'],
    package_dir={
        'snapshotter': 'apps/snapshotter',
    },
    package_data={
        'snapshotter': ['templates/*.j2'],
    },
    install_requires=[
        'kubernetes>=28.0.0',
        'PyYAML>=6.0',
        'Jinja2>=3.1',
        'prometheus-client>=0.17.0',
        'boto3>=1.28.0',
        'urllib3>=1.26',
    ],
    extras_require={
        'test': [
            'pytest>=7.0.0',
        ],
    },
    entry_points={
        'console_scripts': [
            'volume-snapshotter=snapshotter.main:main',
        ],
    },
    python_requires='>=3.11',
    classifiers=[
        'Development Status :: 4 - Beta',
        'Intended Audience :: System Administrators',
        'License :: OSI Approved :: MIT License',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
        'Programming Language :: Python :: 3.13',
    ],
)
