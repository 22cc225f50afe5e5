from ipykernel.kernelapp import IPKernelApp

from .kernel import CalystoC6461

IPKernelApp.launch_instance(kernel_class=CalystoC6461)
