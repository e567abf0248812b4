from setuptools import setup, find_packages

# Function to read the contents of the requirements file
def read_requirements():
    with open('requirements.txt') as req:
        return [line for line in req.read().splitlines() if line and not line.startswith('#')]

setup(
    name='fixelcfe',
    version='1.0.0',
    description='Connectivity-based fixel enhancement (CFE) and permutation testing for fixel-based analysis of diffusion MRI',
    packages=find_packages(),
    python_requires='>=3.8',
    install_requires=read_requirements(),
    extras_require={
        'test': ['pytest'],
    },
    entry_points={
        'console_scripts': [
            'fixelcfe = fixelcfe.__main__:main',
        ]},
)
