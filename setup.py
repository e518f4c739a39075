import os

from setuptools import setup


def read_version():
    here = os.path.abspath(os.path.dirname(__file__))
    version_path = os.path.sep.join((here, "rawtdms", "version.py"))
    v_globals = {}
    v_locals = {}
    exec(open(version_path).read(), v_globals, v_locals)
    return v_locals['__version__']


setup(
  name = 'rawTDMS',
  version = read_version(),
  description = ("NumPy based module for indexing TDMS files produced by LabView "
    "and lazily decoding their raw channel data."),
  packages = ['rawtdms', 'rawtdms.test'],
  long_description=open('README.rst').read(),
  license = 'LGPL',
  classifiers = [
    'Development Status :: 3 - Alpha',
    'Operating System :: OS Independent',
    'Programming Language :: Python',
    'Programming Language :: Python :: 3',
    'Topic :: Scientific/Engineering',
    'License :: OSI Approved :: GNU Library or Lesser General Public License (LGPL)',
    'Intended Audience :: Science/Research',
    'Natural Language :: English',
  ],
  python_requires = '>=3.6',
  install_requires = ['numpy'],
  extras_require = {
      'test': ['pytest>=3.1.0', 'hypothesis'],
  },
)
