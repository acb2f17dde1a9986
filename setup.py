#!/usr/bin/env python

from setuptools import setup
import memcodec

setup(name='python-memcodec',
      version=memcodec.__version__,
      description='Pure python memcached client for the binary and text '
                  'protocols',
      long_description=open('README.md').read(),
      long_description_content_type='text/markdown',
      author='Sean Reifschneider',
      author_email='jafo@tummy.com',
      maintainer='Sean Reifschneider',
      maintainer_email='jafo@tummy.com',
      url='https://github.com/linsomniac/python-memcodec',
      packages=['memcodec'],
      python_requires='>=3.7',
      classifiers=[
        'Development Status :: 3 - Alpha',
        'Intended Audience :: Developers',
        'License :: OSI Approved :: Apache Software License',
        'Operating System :: OS Independent',
        'Programming Language :: Python',
        'Topic :: Internet',
        'Topic :: Software Development :: Libraries :: Python Modules',
        'Programming Language :: Python :: 3',
        ])
