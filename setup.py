#!/usr/bin/env python
from setuptools import setup, find_packages

with open("README.md", "r") as fh:
    long_description = fh.read()

setup(
    name='django-ldapdirectory',
    version='0.1.0',
    description='A pooled, paged LDAP directory client with group membership helpers',
    long_description=long_description,
    long_description_content_type="text/markdown",
    keywords=['django', 'ldap', 'directory'],
    author="Caltech IMSS ADS",
    author_email="imss-ads-staff@caltech.edu",
    url='https://github.com/caltechads/django-ldapdirectory',
    packages=find_packages(exclude=['bin', 'doc']),
    include_package_data=True,
    python_requires='>=3.10',
    install_requires=[
        'django',
        'ldap_filter',
        'pyasn1',
        'python-ldap',
    ],
    extras_require={
        'test': [
            'python-ldap-faker',
            'pytest',
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3"
    ],
)
