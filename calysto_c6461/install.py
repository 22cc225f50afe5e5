import argparse
import json
import os
import sys

from jupyter_client.kernelspec import install_kernel_spec
from IPython.utils.tempdir import TemporaryDirectory

kernel_json = {
    "argv": [
        sys.executable,
        "-m", "calysto_c6461",
        "-f", "{connection_file}"
    ],
    "display_name": "Calysto C6461",
    "language": "asm",
    "codemirror_mode": "gas",
}

def install_my_kernel_spec(user=True, prefix=None):
    with TemporaryDirectory() as td:
        os.chmod(td, 0o755) # Starts off as 700, not user readable
        with open(os.path.join(td, 'kernel.json'), 'w') as f:
            json.dump(kernel_json, f, sort_keys=True)

        print('Installing Jupyter kernel spec')
        install_kernel_spec(td, 'calysto_c6461', user=user, replace=True, prefix=prefix)

def main(argv=None):
    parser = argparse.ArgumentParser(description="Install the Calysto C6461 kernel spec.")
    parser.add_argument("--sys-prefix", action="store_true",
                        help="install into sys.prefix instead of the user directory")
    args = parser.parse_args(argv)
    if args.sys_prefix:
        install_my_kernel_spec(user=False, prefix=sys.prefix)
    else:
        install_my_kernel_spec()

if __name__ == '__main__':
    main()
