#!/usr/bin/env python3
from __future__ import annotations

import re
import setuptools
import pathlib
import sys
import toml

__minver__ = '3.8'
__github__ = 'https://github.com/pfswld/pfswld/'
__gitraw__ = 'https://raw.githubusercontent.com/pfswld/pfswld/'
__author__ = 'pfswld contributors'
__slogan__ = 'Read and write PFS archives and the WLD fragment documents stored in them.'
__topics__ = [
    'Development Status :: 3 - Alpha',
    'Operating System :: OS Independent',
    'Programming Language :: Python :: 3 :: Only',
    'Topic :: Games/Entertainment',
    'Topic :: System :: Archiving :: Compression',
    'Topic :: Utilities',
]


class DeployCommand(setuptools.Command):
    description = 'Tag and push new release.'
    user_options = []

    def initialize_options(self):
        pass

    def finalize_options(self):
        pass

    @staticmethod
    def main():
        import subprocess
        import shlex
        import pfswld
        import os

        from pathlib import Path

        DEVNULL = open(os.devnull, 'wb')

        def run(cmd):
            print(F'run: {cmd}')
            return subprocess.check_call(
                shlex.split(cmd),
                stdout=DEVNULL,
                stderr=DEVNULL,
                cwd=os.getcwd(),
            )

        root = Path(pfswld.__file__).parent.parent
        os.chdir(root)

        try:
            run(F'git tag {pfswld.__version__}')
            run(R'git push')
            run(R'git push --tags')
        except subprocess.CalledProcessError as E:
            print(F'error: {E!s}')
            return 1
        else:
            return 0

    def run(self):
        sys.exit(self.main())


def get_config():
    sys.path.insert(0, str(pathlib.Path(__file__).parent.absolute()))

    import pfswld

    def get_setup_readme(filename: str | pathlib.Path | None = None):
        if filename is None:
            filename = pathlib.Path(__file__).parent.joinpath('README.md')
        with open(filename, 'r', encoding='UTF8') as README:
            def complete_link(match):
                link: str = match[1]
                if any(link.lower().endswith(xt) for xt in ('jpg', 'gif', 'png', 'svg')):
                    return F'({__gitraw__}master/{link})'
                else:
                    return F'({__github__}blob/master/{link})'
            readme = README.read()
            return re.sub(R'(?<=\])\((?!\w+://)(.*?)\)', complete_link, readme)

    def get_setup_common() -> dict:
        return dict(
            version=pfswld.__version__,
            long_description=get_setup_readme(),
            author=__author__,
            description=__slogan__,
            long_description_content_type='text/markdown',
            url=__github__,
            python_requires=F'>={__minver__}',
            classifiers=__topics__,
        )

    console_scripts = [
        'pfs=pfswld.cli:pfs',
        'wld=pfswld.cli:wld',
    ]

    ppcfg: dict[str, dict[str, list[str]]] = toml.load('pyproject.toml')
    requirements = [r for r in ppcfg['build-system']['requires'] if not r.startswith('setuptools')]
    extras = {'test': ['pytest']}

    config = get_setup_common()
    config.update(
        name=pfswld.__distribution__,
        packages=setuptools.find_namespace_packages(include=('pfswld*',)),
        install_requires=requirements,
        extras_require=extras,
        include_package_data=True,
        entry_points={'console_scripts': console_scripts},
        cmdclass={'deploy': DeployCommand},
    )

    return config


if __name__ == '__main__':
    setuptools.setup(**get_config())
