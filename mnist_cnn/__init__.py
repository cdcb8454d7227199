"""
mnist_cnn package
~~~~~~~~~~~~~~~~~

Convolutional MNIST digit classifier demo.
Contains the sprite-sheet data loader, the Keras model definition,
training and evaluation drivers, matplotlib visualizations and the
API server that streams training progress to the browser.
"""

__version__ = "1.0.0"
