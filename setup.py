from setuptools import setup

setup(
    name='cs.isobox',
    version='20261019',
    description='Decoding, construction and encoding of ISO14496-12 box trees.',
    package_dir={'': 'lib/python'},
    packages=['cs.isobox'],
    python_requires='>=3.10',
    install_requires=[
        'cs.binary',
        'cs.buffer',
        'cs.deco',
        'cs.lex',
        'cs.logutils',
        'cs.pfx',
        'cs.threads',
        'icontract',
        'typeguard',
    ],
    extras_require={
        'test': ['pytest>=8.1'],
    },
)
