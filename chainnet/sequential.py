"""
Sequential Pipeline
===================

An ordered chain of layers. Layer i's output array is layer i+1's input
array once the pipeline is connected.

Connection happens lazily, once, on the first set_input_and_output /
set_input_get_output call. Later wiring calls only rebind the pipeline's
endpoints (the first layer's input and the last layer's output); the
interior buffers are kept. Editing the layer list drops the connection so
the next wiring call connects again.

Back-propagation walks the layers in reverse, ping-ponging between two
scratch error buffers sized to the largest layer input/output in the chain.

A Sequential is itself a layer, so pipelines nest.
"""

import logging

from .buffers import allocate
from .exceptions import ShapeMismatchError
from .layers import Container

logger = logging.getLogger(__name__)


class Sequential(Container):
    """
    Sequential pipeline of layers.

    Args:
        layers: Non-empty list of layers, in forward order
        create_io: Allocate own input and output buffers (default: False)

    Example:
        >>> model = Sequential([
        ...     Dense(2, 3, rng=0),
        ...     Activation(3, 'tanh'),
        ...     Dense(3, 1, rng=1),
        ... ], create_io=True)
        >>> model.input_view[:] = [0.5, -0.5]
        >>> model.feed()
    """

    kind = 'sequential'

    def __init__(self, layers, create_io=False, registry=None):
        layers = list(layers)
        self._check_chain(layers)
        super().__init__(layers, layers[0].input_size if layers else 1,
                         layers[-1].output_size if layers else 1, registry=registry)
        self.create_io = create_io
        self._reset_connection()
        if create_io:
            self._create_own_io()

    @staticmethod
    def _check_chain(layers):
        for index, (previous, following) in enumerate(zip(layers, layers[1:])):
            if previous.output_size != following.input_size:
                raise ShapeMismatchError(
                    f"Layer {index} ({previous!r}) outputs {previous.output_size} entries but layer "
                    f"{index + 1} ({following!r}) expects {following.input_size}")
            if previous.dtype != following.dtype:
                raise ShapeMismatchError(
                    f"Layer {index} has dtype {previous.dtype} but layer {index + 1} has {following.dtype}")

    def _reset_connection(self):
        self._connected = False
        self._errors = None

    @property
    def first_layer(self):
        return self.layers[0]

    @property
    def last_layer(self):
        return self.layers[-1]

    @property
    def is_chain_connected(self):
        """True once the interior buffers are wired."""
        return self._connected

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def _on_wired(self):
        if self._connected:
            self._rebind_endpoints()
        else:
            self._connect()

    def _connect(self):
        layers = self.layers
        array, offset = self.input, self.input_offset

        for layer in layers[:-1]:
            array, offset = layer.set_input_get_output(array, offset), 0
        layers[-1].set_input_and_output(array, offset, self.output, self.output_offset)

        self.check_wiring()

        error_size = max(max(layer.input_size, layer.output_size) for layer in layers)
        self._errors = (allocate(error_size, self.dtype), allocate(error_size, self.dtype))
        self._connected = True

        logger.debug("Connected %d layers (scratch error buffers of %d entries)", len(layers), error_size)

    def _rebind_endpoints(self):
        first, last = self.first_layer, self.last_layer
        if first is last:
            first.set_input_and_output(self.input, self.input_offset, self.output, self.output_offset)
        else:
            first.set_input_and_output(self.input, self.input_offset, first.output, first.output_offset)
            last.set_input_and_output(last.input, last.input_offset, self.output, self.output_offset)
        self.check_wiring()

    def check_wiring(self):
        """
        Verify that every layer's output window is the next layer's input window.

        Raises:
            ShapeMismatchError: If a pair of adjacent layers is wired to
                different windows (for example after one of them was rewired
                by hand).
        """
        for index, (previous, following) in enumerate(zip(self.layers, self.layers[1:])):
            if not previous.output_slice.aliases(following.input_slice):
                raise ShapeMismatchError(
                    f"Layer {index} ({previous!r}) does not write the buffer layer {index + 1} "
                    f"({following!r}) reads")

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _forward(self, learning):
        for layer in self.layers:
            layer.feed(learning)

    def _backward(self, output_error, output_error_offset, input_error, input_error_offset, learning):
        error, error_offset = output_error, output_error_offset
        last_index = len(self.layers) - 1

        for step, layer in enumerate(reversed(self.layers)):
            if step == last_index:
                target, target_offset = input_error, input_error_offset
            else:
                target, target_offset = self._errors[step % 2], 0
            layer.back_propagate(error, error_offset, target, target_offset, learning)
            error, error_offset = target, target_offset

    # ------------------------------------------------------------------
    # Editing
    # ------------------------------------------------------------------

    def add_top_layer(self, layer):
        """Append a layer after the current last layer."""
        self._edit(self.layers + [layer])

    def add_bottom_layer(self, layer):
        """Insert a layer before the current first layer."""
        self._edit([layer] + self.layers)

    def remove_top_layer(self):
        """Remove and return the last layer."""
        removed = self.layers[-1]
        self._edit(self.layers[:-1])
        return removed

    def remove_bottom_layer(self):
        """Remove and return the first layer."""
        removed = self.layers[0]
        self._edit(self.layers[1:])
        return removed

    def _edit(self, layers):
        if not layers:
            raise ShapeMismatchError("A pipeline must keep at least one layer")
        self._check_chain(layers)
        if layers[0].dtype != self.dtype:
            raise ShapeMismatchError(f"Layer dtype {layers[0].dtype} differs from pipeline dtype {self.dtype}")

        self.layers = layers
        self.input_size = layers[0].input_size
        self.output_size = layers[-1].output_size

        self._reset_connection()
        self.input = None
        self.input_offset = 0
        self.output = None
        self.output_offset = 0
        self._fed = False
        if self.create_io:
            self._create_own_io()

    # ------------------------------------------------------------------
    # Duplication
    # ------------------------------------------------------------------

    def _rebuild(self, layers):
        return Sequential(layers, create_io=self.create_io, registry=self.registry)

    def __repr__(self):
        inner = ', '.join(repr(layer) for layer in self.layers)
        return f"Sequential([{inner}])"
