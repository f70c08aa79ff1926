from setuptools import setup, find_packages
import re

module_file = open("rebalancer/__init__.py").read()
metadata = dict(re.findall(r"__([a-z]+)__\s*=\s*['\"]([^'\"]*)['\"]", module_file))
long_description = open('README.rst').read()

setup(
    name='ceph-rebalancer',
    version=metadata['version'],
    packages=find_packages(),
    author='Ceph Rebalancer Developers',
    author_email='dev@ceph.io',
    description='Gradual data rebalancing tool for Ceph',
    license='Apache-2.0',
    keywords='ceph crush reweight rebalance osd',
    long_description=long_description,
    classifiers=[
        'Intended Audience :: System Administrators',
        'License :: OSI Approved :: Apache Software License',
        'Natural Language :: English',
        'Operating System :: POSIX :: Linux',
        'Programming Language :: Python :: 3',
        'Topic :: System :: Distributed Computing',
        'Topic :: System :: Filesystems',
    ],
    python_requires='>=3.6',
    install_requires=['PyYAML',
                      'docopt',
                      'humanfriendly',
                      'prettytable',
                      'cherrypy',
                      ],
    extras_require = {
        'test': [
            'pytest',
        ]
    },

    # to find the code associated with entry point
    # A.B:foo first cd into directory A, open file B
    # and find sub foo
    entry_points={
        'console_scripts': [
            'ceph-rebalancer = scripts.reweight:main',
            ],
        },

    )
