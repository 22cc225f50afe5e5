import io

from setuptools import find_packages, setup

with io.open('calysto_c6461/_version.py', encoding="utf-8") as fid:
    for line in fid:
        if line.startswith('__version__'):
            __version__ = line.strip().split()[-1][1:-1]
            break

with io.open('README.md', encoding="utf-8") as f:
    readme = f.read()

setup(name='calysto_c6461',
      version=__version__,
      description='An assembler, simulator and Jupyter kernel for the CSCI 6461 computer, based on MetaKernel',
      long_description=readme,
      long_description_content_type='text/markdown',
      install_requires=["metakernel", "ipykernel", "jupyter_client", "ipython"],
      extras_require={'test': ["pytest"]},
      python_requires='>=3.7',
      packages=find_packages(include=["calysto_c6461", "calysto_c6461.*"]),
      entry_points={
          'console_scripts': [
              'c6461-asm = calysto_c6461.assembler:main',
          ],
      },
      classifiers = [
          'Framework :: IPython',
          'License :: OSI Approved :: BSD License',
          'Programming Language :: Python :: 3',
          'Programming Language :: Assembly',
          'Topic :: System :: Shells',
          'Topic :: Education',
      ]
)
